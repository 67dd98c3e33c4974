from aws_cdk import aws_codedeploy as codedeploy
from constructs import IConstruct

from handson_cdk.topology import ECS_DEPLOYMENT_CONFIGS, PeerService


def inject_protected_env(env: dict, protected: dict):
    """
    Inject protected environment variables into an environment dictionary, raising an error if any of the protected
    variables are already set.
    """
    for key, value in protected.items():
        if key in env:
            raise ValueError(f"You cannot specify reserved environment variable '{key}'.")
        env[key] = value


def peer_service_url(peer: PeerService, user_name: str, namespace_name: str) -> str:
    """
    Cloud Map address of another ecsdemo service, e.g.
    http://handsonEcsCicd-ecsdemo-crystal.handson-service:3000/crystal
    """
    return f"http://{user_name}-ecsdemo-{peer.name}.{namespace_name}:{peer.port}{peer.path}"


def resolve_ecs_deployment_config(name: str) -> codedeploy.IEcsDeploymentConfig:
    try:
        return ECS_DEPLOYMENT_CONFIGS[name]
    except KeyError:
        raise ValueError(f"Unknown ECS deployment config '{name}'") from None


def print_nag_findings(scope: IConstruct):
    for node in scope.node.children:
        # Recurse into child nodes
        print_nag_findings(node)

        # Look for metadata entries attached by cdk-nag
        metadata = node.node.metadata
        for entry in metadata:
            if entry.type == "aws:cdk:warning":
                print(f"[Warning] {node.node.path}: {entry.data}")
            elif entry.type == "aws:cdk:error":
                print(f"[Error] {node.node.path}: {entry.data}")
