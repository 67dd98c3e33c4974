from aws_cdk import Stack, Tags
from constructs import Construct

from handson_cdk.infrastructure import EcsInfrastructure
from handson_cdk.nag_suppressions import suppress_nags_pre_synth
from handson_cdk.topology import BlueGreenTopology


class InfrastructureStack(Stack):
    """
    Shared network and platform: everything the frontend service stack plugs into.
    """
    def __init__(self, scope: Construct, construct_id: str, topology: BlueGreenTopology | None = None, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.project_tag = self.node.try_get_context("projectNameTag") or "handson"
        self.topology = topology or BlueGreenTopology.from_context(self.node)
        self.name = self.topology.id_prefix

        self.infrastructure = EcsInfrastructure(self, f"{self.name}-Infrastructure", topology=self.topology)

        self.vpc = self.infrastructure.vpc
        self.load_balancer = self.infrastructure.load_balancer
        self.cluster = self.infrastructure.cluster
        self.frontend_service_sg = self.infrastructure.frontend_service_sg
        self.cloudmap_namespace = self.infrastructure.cloudmap_namespace
        self.frontend_task_role = self.infrastructure.frontend_task_role
        self.task_execution_role = self.infrastructure.task_execution_role
        self.frontend_log_group = self.infrastructure.frontend_log_group
        self.blue_target_group = self.infrastructure.blue_target_group
        self.green_target_group = self.infrastructure.green_target_group
        self.front_listener = self.infrastructure.front_listener
        self.front_test_listener = self.infrastructure.front_test_listener

        Tags.of(self).add("project-name", self.project_tag)

        suppress_nags_pre_synth(self)
