from aws_cdk import Stack
from cdk_nag import NagSuppressions

from handson_cdk.frontend_service import FrontendService
from handson_cdk.infrastructure import EcsInfrastructure


class InapplicableSuppressionError(Exception):
    pass


def suppress_nags_pre_synth(stack: Stack):
    """
    Apply cdk-nag suppressions to whichever of the infrastructure and frontend constructs the
    stack carries. Must be called once all constructs have been created.
    """
    infrastructure = getattr(stack, "infrastructure", None)
    frontend = getattr(stack, "frontend", None)

    try:
        if infrastructure is not None:
            _suppress_alb_sg(infrastructure)
            _suppress_log_bucket(infrastructure)
            _suppress_task_roles(infrastructure)
            _suppress_load_balancer(infrastructure)
            _suppress_cluster(infrastructure)
            _suppress_auto_delete_provider(stack)
        if frontend is not None:
            _suppress_frontend_task_definition(frontend)
            _suppress_execution_role_grants(frontend)
    except Exception as e:
        raise InapplicableSuppressionError(f"Failed to apply pre-synth suppressions to {stack.node.path}") from e


def _suppress_alb_sg(infrastructure: EcsInfrastructure):
    NagSuppressions.add_resource_suppressions(
        infrastructure.alb_sg,
        [
            {
                "id": "AwsSolutions-EC23",
                "reason": "The ALB is internet facing; production and test listener ports are open to the world on purpose."
            }
        ]
    )


def _suppress_log_bucket(infrastructure: EcsInfrastructure):
    NagSuppressions.add_resource_suppressions(
        infrastructure.log_bucket,
        [{"id": "AwsSolutions-S1", "reason": "Log bucket is not itself logged to avoid circular logging"}]
    )


def _suppress_task_roles(infrastructure: EcsInfrastructure):
    NagSuppressions.add_resource_suppressions(
        infrastructure.frontend_task_role,
        [
            {
                "id": "AwsSolutions-IAM5",
                "reason": "ECS Exec session channels and log streams are not known ahead of time.",
                "appliesTo": ["Resource::*"]
            }
        ],
        apply_to_children=True
    )
    NagSuppressions.add_resource_suppressions(
        infrastructure.task_execution_role,
        [
            {
                "id": "AwsSolutions-IAM4",
                "reason": "AmazonECSTaskExecutionRolePolicy is the AWS-maintained policy for pulling images and writing logs.",
                "appliesTo": [
                    "Policy::arn:<AWS::Partition>:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
                ]
            }
        ]
    )


def _suppress_load_balancer(infrastructure: EcsInfrastructure):
    if infrastructure.access_logs_enabled:
        return
    NagSuppressions.add_resource_suppressions(
        infrastructure.load_balancer,
        [
            {
                "id": "AwsSolutions-ELB2",
                "reason": "Access logs need a concrete region; environment-agnostic synths skip them."
            }
        ]
    )


def _suppress_cluster(infrastructure: EcsInfrastructure):
    if infrastructure.topology.enable_container_insights:
        return
    NagSuppressions.add_resource_suppressions(
        infrastructure.cluster.node.default_child,
        [
            {
                "id": "AwsSolutions-ECS4",
                "reason": "Container insights are disabled in dev to reduce CloudWatch costs."
            }
        ]
    )


def _suppress_frontend_task_definition(frontend: FrontendService):
    NagSuppressions.add_resource_suppressions(
        frontend.task_definition,
        [
            {
                "id": "AwsSolutions-ECS2",
                "reason": "Environment only carries Cloud Map addresses of peer services; no secrets."
            }
        ]
    )


def _suppress_execution_role_grants(frontend: FrontendService):
    """
    The image pull and log grants land on the execution role's DefaultPolicy when the container
    is added, after the infrastructure suppressions ran.
    """
    default_policy = frontend.execution_role.node.try_find_child("DefaultPolicy")
    if default_policy is None:
        raise InapplicableSuppressionError("DefaultPolicy not attached to the task execution role")

    NagSuppressions.add_resource_suppressions(
        default_policy,
        [
            {
                "id": "AwsSolutions-IAM5",
                "reason": "ecr:GetAuthorizationToken is account wide and cannot be scoped to a repository.",
                "appliesTo": ["Resource::*"]
            }
        ],
        apply_to_children=True
    )


def _suppress_auto_delete_provider(stack: Stack):
    # Only present when the log bucket empties itself on teardown
    provider = stack.node.try_find_child("Custom::S3AutoDeleteObjectsCustomResourceProvider")
    if provider is None:
        return

    NagSuppressions.add_resource_suppressions(
        provider,
        [
            {
                "id": "AwsSolutions-IAM4",
                "reason": "CDK default Lambda uses managed policy for basic logging; not replaced to preserve default behavior",
                "appliesTo": [
                    "Policy::arn:<AWS::Partition>:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
                ]
            },
            {
                "id": "AwsSolutions-L1",
                "reason": "CDK-generated custom resource Lambda; runtime control is not available"
            }
        ],
        apply_to_children=True
    )
