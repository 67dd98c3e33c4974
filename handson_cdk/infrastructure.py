from aws_cdk import (
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
    aws_s3 as s3,
    aws_servicediscovery as servicediscovery,
    RemovalPolicy,
    Stack, CfnOutput, Token
)
from constructs import Construct

from handson_cdk.topology import BlueGreenTopology, TrafficRoute


class EcsInfrastructure(Construct):
    def __init__(self, scope: Construct, id: str, *, topology: BlueGreenTopology) -> None:
        """
        Network and platform foundation for the frontend service: VPC, ALB with a production
        and a test listener, the blue and green target groups behind them, ECS cluster,
        Cloud Map namespace, task roles and log group.
        """
        super().__init__(scope, id)

        self.topology = topology
        self.name = topology.id_prefix
        self.is_production = topology.is_production
        self.access_logs_enabled = False

        self.log_retention = logs.RetentionDays.ONE_YEAR if self.is_production else logs.RetentionDays.ONE_WEEK
        self.removal_policy = RemovalPolicy.RETAIN if self.is_production else RemovalPolicy.DESTROY

        self._create_log_bucket()
        self._create_vpc()
        self._create_security_groups()
        self._create_namespace()
        self._create_roles()
        self._create_log_group()
        self._create_load_balancer()
        self._create_cluster()

        self._delayed_tasks()

    def _create_log_bucket(self):
        """
        Bucket receiving VPC flow logs and ALB access logs.
        """
        self.log_bucket = s3.Bucket(
            self,
            f"{self.name}-LogBucket",
            encryption=s3.BucketEncryption.S3_MANAGED,
            removal_policy=self.removal_policy,
            auto_delete_objects=not self.is_production,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
        )

    def _create_vpc(self):
        """
        Public subnets only: the ALB and the Fargate tasks both sit in them, tasks get public IPs
        to pull their image, so there are no NAT gateways.
        """
        network = self.topology.network
        self.vpc = ec2.Vpc(
            self,
            f"{self.name}-VPC",
            ip_addresses=ec2.IpAddresses.cidr(network.cidr),
            max_azs=network.max_azs,
            nat_gateways=0,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="ingress",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=network.subnet_cidr_mask,
                ),
            ],
            flow_logs={
                "AllTraffic": ec2.FlowLogOptions(
                    destination=ec2.FlowLogDestination.to_s3(self.log_bucket)
                )
            },
        )

    def _create_security_groups(self):
        self.alb_sg = ec2.SecurityGroup(
            self,
            f"{self.name}-ALBSG",
            vpc=self.vpc,
            security_group_name="handson-alb-sg",
            description="ALB for production and test listeners",
        )
        for rule in self.topology.ingress:
            self.alb_sg.add_ingress_rule(
                ec2.Peer.ipv4(rule.source),
                ec2.Port.tcp(rule.port),
                rule.description or f"Listener port {rule.port}",
            )

        self.frontend_service_sg = ec2.SecurityGroup(
            self,
            f"{self.name}-FrontendServiceSG",
            vpc=self.vpc,
            security_group_name="frontendServiceSecurityGroup",
            description="Frontend Fargate tasks",
        )
        self.frontend_service_sg.add_ingress_rule(self.alb_sg, ec2.Port.all_tcp(), "Traffic from ALB")

    def _create_namespace(self):
        self.cloudmap_namespace = servicediscovery.PrivateDnsNamespace(
            self,
            f"{self.name}-Namespace",
            name=self.topology.namespace_name,
            vpc=self.vpc,
        )

    def _create_roles(self):
        ecs_exec_statement = iam.PolicyStatement(
            sid=f"{self.name}AllowECSExec",
            resources=["*"],
            actions=[
                "ssmmessages:CreateControlChannel",  # for ECS Exec
                "ssmmessages:CreateDataChannel",
                "ssmmessages:OpenControlChannel",
                "ssmmessages:OpenDataChannel",
                "logs:CreateLogStream",
                "logs:DescribeLogGroups",
                "logs:DescribeLogStreams",
                "logs:PutLogEvents",
            ],
        )

        self.frontend_task_role = iam.Role(
            self,
            "FrontendTaskRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
        )
        self.frontend_task_role.add_to_policy(ecs_exec_statement)

        self.task_execution_role = iam.Role(
            self,
            f"{self.name}-TaskExecutionRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AmazonECSTaskExecutionRolePolicy")
            ],
        )

    def _create_log_group(self):
        self.frontend_log_group = logs.LogGroup(
            self,
            "frontendLogGroup",
            log_group_name=f"{self.name}-frontend-service",
            retention=self.log_retention,
            removal_policy=self.removal_policy,
        )

    def _create_load_balancer(self):
        self.load_balancer = elbv2.ApplicationLoadBalancer(
            self,
            f"{self.name}-ALB",
            vpc=self.vpc,
            security_group=self.alb_sg,
            internet_facing=True,
            load_balancer_name=f"{self.name}-ALB",
            vpc_subnets=ec2.SubnetSelection(subnets=self.vpc.public_subnets),
        )

        # Blue: production traffic
        self.front_listener, self.blue_target_group = self._create_route("Front", "Blue", self.topology.blue)
        # Green: test traffic for the next revision until CodeDeploy promotes it
        self.front_test_listener, self.green_target_group = self._create_route("FrontTest", "Green", self.topology.green)

        CfnOutput(self, "LoadBalancerDNS", value=self.load_balancer.load_balancer_dns_name)
        CfnOutput(
            self,
            "TestListenerUrl",
            value=f"http://{self.load_balancer.load_balancer_dns_name}:{self.topology.green.listener_port}",
        )

    def _create_route(self, listener_label: str, colour: str, route: TrafficRoute):
        """
        One listener forwarding to one target group. The target group is IP-typed and starts
        empty so CodeDeploy can register task sets into either colour.
        """
        listener = self.load_balancer.add_listener(
            f"{self.name}-{listener_label}-Listener",
            port=route.listener_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            open=False,  # ingress is governed by the ALB security group rules
        )

        target_group = elbv2.ApplicationTargetGroup(
            self,
            f"{self.name}-{colour}-TargetGroup",
            vpc=self.vpc,
            port=route.target_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.IP,
            health_check=elbv2.HealthCheck(path=route.health_check_path),
        )
        listener.add_target_groups(f"{self.name}-{colour}-TG", target_groups=[target_group])

        return listener, target_group

    def _create_cluster(self):
        self.cluster = ecs.Cluster(
            self,
            f"{self.name}-ECSCluster",
            vpc=self.vpc,
            cluster_name=self.topology.cluster_name,
            container_insights_v2=
            ecs.ContainerInsights.ENABLED if self.topology.enable_container_insights else ecs.ContainerInsights.DISABLED,
        )

        CfnOutput(self, "ClusterName", value=self.cluster.cluster_name)

    def _delayed_tasks(self):
        # ALB access logging needs the region-specific ELB account, so only when the region is known
        region = Stack.of(self).region

        if not Token.is_unresolved(region):
            self.load_balancer.log_access_logs(
                bucket=self.log_bucket,
                prefix=f"{self.name}-ALB-logs",
            )
            self.access_logs_enabled = True
