import unittest

from aws_cdk import App, Stack
from aws_cdk import aws_elasticloadbalancingv2 as elbv2
from aws_cdk.assertions import Template, Match

from handson_cdk.frontend_service_stack import FrontendServiceStack
from handson_cdk.infrastructure_stack import InfrastructureStack

CONTEXT = {
    "idPrefix": "test",
    "userName": "tester",
    "isProduction": False,
    "projectNameTag": "handson-ecs-cicd",
    "frontendImageTag": "v1",
    "frontendEnvironment": {
        "LOG_LEVEL": "info"
    },
}


def _frontend_stack(app: App, infra: InfrastructureStack, stack_id: str = "TestFrontEcsStack", **overrides):
    kwargs = dict(
        cluster=infra.cluster,
        frontend_service_sg=infra.frontend_service_sg,
        frontend_task_role=infra.frontend_task_role,
        frontend_task_execution_role=infra.task_execution_role,
        frontend_log_group=infra.frontend_log_group,
        cloudmap_namespace=infra.cloudmap_namespace,
        blue_target_group=infra.blue_target_group,
        green_target_group=infra.green_target_group,
        front_listener=infra.front_listener,
        front_test_listener=infra.front_test_listener,
    )
    kwargs.update(overrides)
    return FrontendServiceStack(app, stack_id, **kwargs)


def _second_load_balancer(app: App, infra: InfrastructureStack):
    """A listener and target group on another ALB in the same VPC."""
    stack = Stack(app, "TestOtherAlbStack")
    load_balancer = elbv2.ApplicationLoadBalancer(stack, "OtherALB", vpc=infra.vpc)
    listener = load_balancer.add_listener(
        "OtherListener",
        port=8080,
        protocol=elbv2.ApplicationProtocol.HTTP,
        open=False,
    )
    target_group = elbv2.ApplicationTargetGroup(
        stack,
        "OtherTargetGroup",
        vpc=infra.vpc,
        port=3000,
        protocol=elbv2.ApplicationProtocol.HTTP,
        target_type=elbv2.TargetType.IP,
    )
    listener.add_target_groups("OtherTG", target_groups=[target_group])
    return listener, target_group


class TestFrontendServiceStack(unittest.TestCase):
    def setUp(self):
        self.app = App(context=CONTEXT)
        self.infra = InfrastructureStack(self.app, "TestVpcStack")
        self.stack = _frontend_stack(self.app, self.infra)
        self.template = Template.from_stack(self.stack)
        self.infra_template = Template.from_stack(self.infra)
        self.project_tag = self.app.node.try_get_context("projectNameTag") or "handson"

    def assert_env_var(self, var_name, value):
        self.template.has_resource_properties("AWS::ECS::TaskDefinition", {
            "ContainerDefinitions": Match.array_with([
                Match.object_like({
                    "Environment": Match.array_with([
                        Match.object_like({"Name": var_name, "Value": value})
                    ])
                })
            ])
        })

    def test_task_definition(self):
        self.template.has_resource_properties("AWS::ECS::TaskDefinition", {
            "Cpu": "256",
            "Memory": "512",
            "NetworkMode": "awsvpc",
            "RequiresCompatibilities": ["FARGATE"],
            "RuntimePlatform": {
                "CpuArchitecture": "X86_64",
                "OperatingSystemFamily": "LINUX"
            }
        })

    def test_container(self):
        self.template.has_resource_properties("AWS::ECS::TaskDefinition", {
            "ContainerDefinitions": [
                Match.object_like({
                    "Name": "ecsdemo-frontend",
                    "Cpu": 256,
                    "Memory": 512,
                    "PortMappings": [{"ContainerPort": 3000, "HostPort": 3000, "Protocol": "tcp"}],
                    "Image": Match.any_value(),
                    "LogConfiguration": Match.object_like({
                        "LogDriver": "awslogs",
                        "Options": Match.object_like({"awslogs-stream-prefix": "test-FrontendStream"})
                    })
                })
            ]
        })

    def test_peer_urls_in_environment(self):
        self.assert_env_var("CRYSTAL_URL", "http://tester-ecsdemo-crystal.test-service:3000/crystal")
        self.assert_env_var("NODEJS_URL", "http://tester-ecsdemo-nodejs.test-service:3000")
        self.assert_env_var("LOG_LEVEL", "info")

    def test_service(self):
        self.template.has_resource_properties("AWS::ECS::Service", {
            "ServiceName": "tester-ecsdemo-frontend",
            "DesiredCount": 3,
            "LaunchType": "FARGATE",
            "EnableExecuteCommand": True,
            "DeploymentController": {"Type": "CODE_DEPLOY"},
            "NetworkConfiguration": {
                "AwsvpcConfiguration": Match.object_like({"AssignPublicIp": "ENABLED"})
            },
            "LoadBalancers": [
                Match.object_like({"ContainerName": "ecsdemo-frontend", "ContainerPort": 3000})
            ],
            "ServiceRegistries": Match.any_value()
        })

    def test_service_discovery(self):
        self.template.has_resource_properties("AWS::ServiceDiscovery::Service", {
            "Name": "tester-ecsdemo-frontend",
            "DnsConfig": Match.object_like({
                "DnsRecords": [{"TTL": 60, "Type": "A"}]
            })
        })

    def test_codedeploy_application(self):
        self.template.has_resource_properties("AWS::CodeDeploy::Application", {
            "ApplicationName": "FrontECSService",
            "ComputePlatform": "ECS"
        })

    def test_deployment_group(self):
        self.template.has_resource_properties("AWS::CodeDeploy::DeploymentGroup", {
            "DeploymentGroupName": "frontEcsDeployment",
            "DeploymentConfigName": "CodeDeployDefault.ECSAllAtOnce",
            "DeploymentStyle": {
                "DeploymentOption": "WITH_TRAFFIC_CONTROL",
                "DeploymentType": "BLUE_GREEN"
            },
            "AutoRollbackConfiguration": {
                "Enabled": True,
                "Events": Match.array_with(["DEPLOYMENT_FAILURE"])
            },
            "ECSServices": [Match.object_like({
                "ClusterName": Match.any_value(),
                "ServiceName": Match.any_value()
            })],
            "LoadBalancerInfo": {
                "TargetGroupPairInfoList": [Match.object_like({
                    "ProdTrafficRoute": Match.any_value(),
                    "TestTrafficRoute": Match.any_value(),
                    "TargetGroups": Match.any_value()
                })]
            }
        })

    def test_outputs(self):
        outputs = self.template.find_outputs("*")
        for name in ["ServiceName", "DeploymentGroupName"]:
            self.assertTrue(
                any(name in logical_id for logical_id in outputs),
                f"Missing '{name}' output"
            )

    def test_infrastructure_holds_no_service_resources(self):
        for resource_type in [
            "AWS::ECS::Service",
            "AWS::ECS::TaskDefinition",
            "AWS::CodeDeploy::DeploymentGroup",
        ]:
            self.infra_template.resource_count_is(resource_type, 0)

    def test_all_resources_tagged_with_project_name(self):
        resources = self.template.to_json().get("Resources", {})

        for logical_id, resource in resources.items():
            properties = resource.get("Properties", {})

            tags = properties.get("Tags")
            if tags is None:
                continue

            project_tags = [
                tag for tag in tags
                if tag.get("Key") == "project-name" and tag.get("Value") == self.project_tag
            ]

            self.assertTrue(
                project_tags,
                f"Resource '{logical_id}' is missing a 'project-name' tag with value '{self.project_tag}'"
            )


class TestFrontendServiceMisconfiguration(unittest.TestCase):
    def test_same_listener_twice_rejected(self):
        app = App(context=CONTEXT)
        infra = InfrastructureStack(app, "TestVpcStack")

        with self.assertRaises(ValueError) as cm:
            _frontend_stack(app, infra, front_test_listener=infra.front_listener)

        self.assertIn("separate listeners", str(cm.exception))

    def test_listener_on_another_load_balancer_rejected(self):
        app = App(context=CONTEXT)
        infra = InfrastructureStack(app, "TestVpcStack")
        other_listener, _ = _second_load_balancer(app, infra)

        with self.assertRaises(ValueError) as cm:
            _frontend_stack(app, infra, front_test_listener=other_listener)

        self.assertIn("same load balancer", str(cm.exception))

    def test_target_group_on_another_load_balancer_rejected(self):
        app = App(context=CONTEXT)
        infra = InfrastructureStack(app, "TestVpcStack")
        _, other_target_group = _second_load_balancer(app, infra)

        with self.assertRaises(ValueError) as cm:
            _frontend_stack(app, infra, green_target_group=other_target_group)

        self.assertIn("green target group", str(cm.exception))

    def test_swapped_colours_rejected(self):
        app = App(context=CONTEXT)
        infra = InfrastructureStack(app, "TestVpcStack")

        with self.assertRaises(ValueError) as cm:
            _frontend_stack(
                app,
                infra,
                blue_target_group=infra.green_target_group,
                green_target_group=infra.blue_target_group,
            )

        self.assertIn("blue target group", str(cm.exception))
        self.assertIn("not the default target", str(cm.exception))

    def test_reserved_environment_variable_rejected(self):
        app = App(context={**CONTEXT, "frontendEnvironment": {"CRYSTAL_URL": "http://elsewhere"}})
        infra = InfrastructureStack(app, "TestVpcStack")

        with self.assertRaises(ValueError) as cm:
            _frontend_stack(app, infra)

        self.assertIn("CRYSTAL_URL", str(cm.exception))


if __name__ == '__main__':
    unittest.main()
