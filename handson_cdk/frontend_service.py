from aws_cdk import (
    aws_codedeploy as codedeploy,
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
    aws_servicediscovery as servicediscovery,
    CfnOutput, Duration, Stack
)
from constructs import Construct

from handson_cdk.topology import BlueGreenTopology
from handson_cdk.utils import inject_protected_env, peer_service_url, resolve_ecs_deployment_config


class FrontendService(Construct):
    def __init__(
            self,
            scope: Construct,
            id: str,
            *,
            topology: BlueGreenTopology,
            cluster: ecs.ICluster,
            service_sg: ec2.ISecurityGroup,
            task_role: iam.IRole,
            execution_role: iam.IRole,
            log_group: logs.ILogGroup,
            namespace: servicediscovery.IPrivateDnsNamespace,
            blue_target_group: elbv2.IApplicationTargetGroup,
            green_target_group: elbv2.IApplicationTargetGroup,
            listener: elbv2.ApplicationListener,
            test_listener: elbv2.ApplicationListener,
    ) -> None:
        """
        The ecsdemo frontend on Fargate, released by CodeDeploy blue/green.

        The service starts in the blue target group behind the production listener. CodeDeploy
        brings each new revision up in the green target group behind the test listener, shifts
        production traffic over and rolls back on its own if the deployment fails.
        """
        super().__init__(scope, id)

        self._check_routes(listener, test_listener, blue_target_group, green_target_group)

        self.topology = topology
        self.name = topology.id_prefix
        self.user_name = topology.user_name
        self.execution_role = execution_role

        self._create_task_definition(task_role, execution_role, log_group, namespace)
        self._create_service(cluster, service_sg, namespace)

        blue_target_group.add_target(self.service)

        self._create_deployment_group(blue_target_group, green_target_group, listener, test_listener)

    @staticmethod
    def _check_routes(listener: elbv2.ApplicationListener, test_listener: elbv2.ApplicationListener,
                      blue_target_group: elbv2.IApplicationTargetGroup,
                      green_target_group: elbv2.IApplicationTargetGroup):
        """
        The deployment group may only cite target groups served by its own listeners: blue behind
        the production listener, green behind the test listener, all on one load balancer.
        """
        if listener.node.path == test_listener.node.path:
            raise ValueError("Production and test traffic must use separate listeners")

        if listener.load_balancer.node.path != test_listener.load_balancer.node.path:
            raise ValueError(
                f"Listeners {listener.node.path} and {test_listener.node.path} must belong to the same load balancer"
            )

        for colour, route_listener, target_group in (
                ("blue", listener, blue_target_group),
                ("green", test_listener, green_target_group),
        ):
            if not _forwards_to(route_listener, target_group):
                raise ValueError(
                    f"The {colour} target group {target_group.node.path} is not the default target of "
                    f"listener {route_listener.node.path}"
                )

    def _create_task_definition(self, task_role, execution_role, log_group, namespace):
        container = self.topology.container

        self.task_definition = ecs.FargateTaskDefinition(
            self,
            f"{self.user_name}-FrontendTaskDef",
            memory_limit_mib=container.memory_limit_mib,
            cpu=container.cpu,
            execution_role=execution_role,
            task_role=task_role,
            runtime_platform=ecs.RuntimePlatform(
                operating_system_family=ecs.OperatingSystemFamily.LINUX,
                cpu_architecture=ecs.CpuArchitecture.X86_64,
            ),
        )

        repository = ecr.Repository.from_repository_arn(
            self,
            f"{self.name}-FrontendRepository",
            container.repository_arn,
        )
        print(f"Using frontend image {container.repository_arn}:{container.image_tag}")

        environment = dict(container.environment)
        inject_protected_env(environment, {
            peer.env_var: peer_service_url(peer, self.user_name, namespace.namespace_name)
            for peer in self.topology.peers
        })

        self.container = self.task_definition.add_container(
            f"{self.name}-FrontendContainer",
            container_name=container.name,
            image=ecs.ContainerImage.from_ecr_repository(repository, tag=container.image_tag),
            memory_limit_mib=container.memory_limit_mib,
            cpu=container.cpu,
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix=f"{self.name}-FrontendStream",
                log_group=log_group,
            ),
            port_mappings=[
                ecs.PortMapping(
                    container_port=mapping.container_port,
                    host_port=mapping.host_port or mapping.container_port,
                    protocol=ecs.Protocol.TCP,
                )
                for mapping in container.port_mappings
            ],
            environment=environment,
        )

    def _create_service(self, cluster, service_sg, namespace):
        service = self.topology.service

        self.service = ecs.FargateService(
            self,
            f"{self.name}-FrontendService",
            service_name=service.name,
            cluster=cluster,
            desired_count=service.desired_count,
            assign_public_ip=service.assign_public_ip,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
            task_definition=self.task_definition,
            enable_execute_command=service.enable_execute_command,
            cloud_map_options=ecs.CloudMapOptions(
                name=service.discovery_name,
                cloud_map_namespace=namespace,
                dns_record_type=servicediscovery.DnsRecordType.A,
                dns_ttl=Duration.seconds(service.dns_ttl_seconds),
            ),
            security_groups=[service_sg],
            deployment_controller=ecs.DeploymentController(
                type=ecs.DeploymentControllerType.CODE_DEPLOY,
            ),
        )

        CfnOutput(self, "ServiceName", value=self.service.service_name)

    def _create_deployment_group(self, blue_target_group, green_target_group, listener, test_listener):
        release = self.topology.release

        self.application = codedeploy.EcsApplication(
            self,
            f"{self.name}-Ecs-Application",
            application_name=release.application_name,
        )

        termination_wait_time = None
        if release.termination_wait_minutes is not None:
            termination_wait_time = Duration.minutes(release.termination_wait_minutes)

        self.deployment_group = codedeploy.EcsDeploymentGroup(
            self,
            f"{self.name}-BG-Deployment-Group",
            blue_green_deployment_config=codedeploy.EcsBlueGreenDeploymentConfig(
                blue_target_group=blue_target_group,
                green_target_group=green_target_group,
                listener=listener,
                test_listener=test_listener,
                termination_wait_time=termination_wait_time,
            ),
            auto_rollback=codedeploy.AutoRollbackConfig(
                failed_deployment=release.auto_rollback,
            ),
            service=self.service,
            application=self.application,
            deployment_config=resolve_ecs_deployment_config(release.deployment_config),
            deployment_group_name=release.deployment_group_name,
        )

        CfnOutput(self, "DeploymentGroupName", value=self.deployment_group.deployment_group_name)


def _forwards_to(listener: elbv2.ApplicationListener, target_group: elbv2.IApplicationTargetGroup) -> bool:
    stack = Stack.of(listener)
    cfn_listener = listener.node.default_child
    if not isinstance(cfn_listener, elbv2.CfnListener):
        raise ValueError(f"Cannot read the default actions of listener {listener.node.path}")

    actions = stack.resolve(cfn_listener.default_actions)
    return stack.resolve(target_group.target_group_arn) in _target_group_arns(actions)


def _target_group_arns(value) -> list:
    """Every target group ARN a resolved listener action forwards to, at any depth."""
    arns = []
    if isinstance(value, dict):
        for key, item in value.items():
            if key.lower() == "targetgrouparn":
                arns.append(item)
            else:
                arns.extend(_target_group_arns(item))
    elif isinstance(value, list):
        for item in value:
            arns.extend(_target_group_arns(item))
    return arns
