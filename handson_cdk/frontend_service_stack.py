from aws_cdk import (
    Stack, Tags,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
    aws_servicediscovery as servicediscovery,
)
from constructs import Construct

from handson_cdk.frontend_service import FrontendService
from handson_cdk.nag_suppressions import suppress_nags_pre_synth
from handson_cdk.topology import BlueGreenTopology


class FrontendServiceStack(Stack):
    def __init__(
            self,
            scope: Construct,
            construct_id: str,
            *,
            cluster: ecs.ICluster,
            frontend_service_sg: ec2.ISecurityGroup,
            frontend_task_role: iam.IRole,
            frontend_task_execution_role: iam.IRole,
            frontend_log_group: logs.ILogGroup,
            cloudmap_namespace: servicediscovery.IPrivateDnsNamespace,
            blue_target_group: elbv2.IApplicationTargetGroup,
            green_target_group: elbv2.IApplicationTargetGroup,
            front_listener: elbv2.ApplicationListener,
            front_test_listener: elbv2.ApplicationListener,
            topology: BlueGreenTopology | None = None,
            **kwargs
    ) -> None:
        """
        Frontend service and its CodeDeploy blue/green deployment group, deployed on top of
        the resources exported by InfrastructureStack.
        """
        super().__init__(scope, construct_id, **kwargs)

        self.project_tag = self.node.try_get_context("projectNameTag") or "handson"
        self.topology = topology or BlueGreenTopology.from_context(self.node)
        self.name = self.topology.id_prefix

        self.frontend = FrontendService(
            self,
            f"{self.name}-Frontend",
            topology=self.topology,
            cluster=cluster,
            service_sg=frontend_service_sg,
            task_role=frontend_task_role,
            execution_role=frontend_task_execution_role,
            log_group=frontend_log_group,
            namespace=cloudmap_namespace,
            blue_target_group=blue_target_group,
            green_target_group=green_target_group,
            listener=front_listener,
            test_listener=front_test_listener,
        )

        self.service = self.frontend.service
        self.deployment_group = self.frontend.deployment_group

        Tags.of(self).add("project-name", self.project_tag)

        suppress_nags_pre_synth(self)
