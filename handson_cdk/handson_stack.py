from aws_cdk import Stack, Tags
from constructs import Construct

from handson_cdk.frontend_service import FrontendService
from handson_cdk.infrastructure import EcsInfrastructure
from handson_cdk.nag_suppressions import suppress_nags_pre_synth
from handson_cdk.topology import BlueGreenTopology


class HandsonEcsCicdStack(Stack):
    """
    The whole blue/green topology as one deployment unit, for when the network and the
    service do not need separate lifecycles.
    """
    def __init__(self, scope: Construct, construct_id: str, topology: BlueGreenTopology | None = None, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        project_tag = self.node.try_get_context("projectNameTag") or "handson"
        self.topology = topology or BlueGreenTopology.from_context(self.node)
        self.name = self.topology.id_prefix

        # ==== Network & platform ====
        self.infrastructure = EcsInfrastructure(self, f"{self.name}-Infrastructure", topology=self.topology)

        # ==== Frontend service & release ====
        self.frontend = FrontendService(
            self,
            f"{self.name}-Frontend",
            topology=self.topology,
            cluster=self.infrastructure.cluster,
            service_sg=self.infrastructure.frontend_service_sg,
            task_role=self.infrastructure.frontend_task_role,
            execution_role=self.infrastructure.task_execution_role,
            log_group=self.infrastructure.frontend_log_group,
            namespace=self.infrastructure.cloudmap_namespace,
            blue_target_group=self.infrastructure.blue_target_group,
            green_target_group=self.infrastructure.green_target_group,
            listener=self.infrastructure.front_listener,
            test_listener=self.infrastructure.front_test_listener,
        )

        Tags.of(self).add("project-name", project_tag)

        suppress_nags_pre_synth(self)
