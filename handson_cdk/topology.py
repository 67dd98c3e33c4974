"""
Configuration records for the blue/green frontend deployment.

Values are read from the CDK context (cdk.json or ``cdk -c key=value``) and checked for
structural consistency before any construct is declared, so a bad port or a missing ingress
rule fails at synth time rather than during a CodeDeploy rollout.
"""
import ipaddress
import json
from typing import Annotated

from aws_cdk import aws_codedeploy as codedeploy
from constructs import Node
from pydantic import BaseModel, Field, NonNegativeInt, PositiveInt, field_validator, model_validator

DEFAULT_FRONTEND_REPOSITORY_ARN = "arn:aws:ecr:ap-northeast-1:449974608116:repository/devday2019-ecsdemo-frontend"

# Accepted deploymentConfig names and the predefined CodeDeploy configurations they select
ECS_DEPLOYMENT_CONFIGS = {
    "ALL_AT_ONCE": codedeploy.EcsDeploymentConfig.ALL_AT_ONCE,
    "CANARY_10PERCENT_5MINUTES": codedeploy.EcsDeploymentConfig.CANARY_10_PERCENT_5_MINUTES,
    "CANARY_10PERCENT_15MINUTES": codedeploy.EcsDeploymentConfig.CANARY_10_PERCENT_15_MINUTES,
    "LINEAR_10PERCENT_EVERY_1MINUTES": codedeploy.EcsDeploymentConfig.LINEAR_10_PERCENT_EVERY_1_MINUTES,
    "LINEAR_10PERCENT_EVERY_3MINUTES": codedeploy.EcsDeploymentConfig.LINEAR_10_PERCENT_EVERY_3_MINUTES,
}

PortNumber = Annotated[int, Field(ge=1, le=65535)]


def _check_cidr(value: str) -> str:
    ipaddress.ip_network(value)
    return value


class NetworkConfig(BaseModel):
    cidr: str = "10.0.0.0/16"
    max_azs: PositiveInt = 3
    subnet_cidr_mask: int = Field(default=24, ge=16, le=28)

    @field_validator("cidr")
    @classmethod
    def _valid_cidr(cls, value: str) -> str:
        return _check_cidr(value)

    @model_validator(mode="after")
    def _subnets_fit(self) -> "NetworkConfig":
        prefix = ipaddress.ip_network(self.cidr).prefixlen
        if self.subnet_cidr_mask <= prefix:
            raise ValueError(f"Subnet mask /{self.subnet_cidr_mask} must be longer than the VPC prefix /{prefix}")
        if 2 ** (self.subnet_cidr_mask - prefix) < self.max_azs:
            raise ValueError(f"{self.cidr} cannot hold {self.max_azs} subnets of size /{self.subnet_cidr_mask}")
        return self


class IngressRule(BaseModel):
    port: PortNumber
    source: str = "0.0.0.0/0"
    description: str | None = None

    @field_validator("source")
    @classmethod
    def _valid_source(cls, value: str) -> str:
        return _check_cidr(value)


class PortMappingConfig(BaseModel):
    container_port: PortNumber
    host_port: PortNumber | None = None

    @model_validator(mode="after")
    def _awsvpc_host_port(self) -> "PortMappingConfig":
        # Fargate tasks use awsvpc networking, where host and container ports are the same
        if self.host_port is not None and self.host_port != self.container_port:
            raise ValueError(
                f"Host port {self.host_port} must equal container port {self.container_port} on Fargate"
            )
        return self


class ContainerConfig(BaseModel):
    name: str = "ecsdemo-frontend"
    repository_arn: str = DEFAULT_FRONTEND_REPOSITORY_ARN
    image_tag: str = "latest"
    cpu: PositiveInt = 256
    memory_limit_mib: PositiveInt = 512
    port_mappings: list[PortMappingConfig] = Field(
        default_factory=lambda: [PortMappingConfig(container_port=3000)],
        min_length=1,
    )
    environment: dict[str, str] = Field(default_factory=dict)

    @field_validator("environment", mode="before")
    @classmethod
    def _environment_from_json(cls, value):
        # `cdk -c frontendEnvironment=...` hands over a JSON string
        if isinstance(value, str):
            return json.loads(value) if value.strip() else {}
        return value

    @field_validator("repository_arn")
    @classmethod
    def _ecr_arn(cls, value: str) -> str:
        if not value.startswith("arn:") or ":ecr:" not in value or ":repository/" not in value:
            raise ValueError(f"'{value}' is not an ECR repository ARN")
        return value

    @property
    def container_ports(self) -> set[int]:
        return {mapping.container_port for mapping in self.port_mappings}


class ServiceConfig(BaseModel):
    name: str | None = None
    discovery_name: str | None = None
    desired_count: NonNegativeInt = 3
    dns_ttl_seconds: PositiveInt = 60
    assign_public_ip: bool = True
    enable_execute_command: bool = True


class PeerService(BaseModel):
    """Another ecsdemo service reached through the Cloud Map namespace."""
    env_var: str
    name: str
    port: PortNumber = 3000
    path: str = ""

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if value and not value.startswith("/"):
            raise ValueError(f"Peer path '{value}' must start with '/'")
        return value


class TrafficRoute(BaseModel):
    listener_port: PortNumber
    target_port: PortNumber
    health_check_path: str = "/health"

    @field_validator("health_check_path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"Health check path '{value}' must start with '/'")
        return value


class ReleaseConfig(BaseModel):
    application_name: str = "FrontECSService"
    deployment_group_name: str = "frontEcsDeployment"
    deployment_config: str = "ALL_AT_ONCE"
    auto_rollback: bool = True
    termination_wait_minutes: int | None = Field(default=None, ge=0, le=2880)

    @field_validator("deployment_config")
    @classmethod
    def _known_config(cls, value: str) -> str:
        value = value.upper()
        if value not in ECS_DEPLOYMENT_CONFIGS:
            raise ValueError(f"Unknown ECS deployment config '{value}'. Choose one of: {', '.join(ECS_DEPLOYMENT_CONFIGS)}")
        return value


def _default_peers() -> list[PeerService]:
    return [
        PeerService(env_var="CRYSTAL_URL", name="crystal", port=3000, path="/crystal"),
        PeerService(env_var="NODEJS_URL", name="nodejs", port=3000),
    ]


class BlueGreenTopology(BaseModel):
    """
    Everything the stacks need to lay out the frontend service and its blue/green release.

    The blue route carries production traffic on the primary listener; the green route is the
    staging slot CodeDeploy fills with the next revision behind the test listener.
    """
    id_prefix: str = "handson"
    user_name: str = "handsonEcsCicd"
    is_production: bool = True
    enable_container_insights: bool = True
    cluster_name: str = "handson-ecs-cicd-fargate-cluster"
    single_stack: bool = False
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    ingress: list[IngressRule] = Field(
        default_factory=lambda: [IngressRule(port=80), IngressRule(port=9000)]
    )
    container: ContainerConfig = Field(default_factory=ContainerConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    peers: list[PeerService] = Field(default_factory=_default_peers)
    blue: TrafficRoute = Field(default_factory=lambda: TrafficRoute(listener_port=80, target_port=3000))
    green: TrafficRoute = Field(default_factory=lambda: TrafficRoute(listener_port=9000, target_port=3000))
    release: ReleaseConfig = Field(default_factory=ReleaseConfig)

    @field_validator("ingress", mode="before")
    @classmethod
    def _ingress_from_ports(cls, value):
        """
        Accept ingress rules as bare ports, including the JSON list or comma-separated string
        form `cdk -c albIngressPorts=80,9000` produces.
        """
        if isinstance(value, (int, str)):
            value = _split_ports(value)
        return [{"port": rule} if isinstance(rule, (int, str)) else rule for rule in value]

    @model_validator(mode="after")
    def _check_consistency(self) -> "BlueGreenTopology":
        if self.blue.listener_port == self.green.listener_port:
            raise ValueError(
                f"Blue and green routes share listener port {self.blue.listener_port}; "
                "each listener must carry exactly one target group"
            )

        open_ports = {rule.port for rule in self.ingress}
        for label, route in (("blue", self.blue), ("green", self.green)):
            if route.listener_port not in open_ports:
                raise ValueError(f"No ingress rule opens the {label} listener port {route.listener_port}")
            if route.target_port not in self.container.container_ports:
                raise ValueError(
                    f"The {label} target group port {route.target_port} is not mapped by container "
                    f"'{self.container.name}' (mapped: {sorted(self.container.container_ports)})"
                )

        if self.blue.target_port != self.green.target_port:
            raise ValueError("Blue and green target groups must forward to the same container port")

        default_name = f"{self.user_name}-ecsdemo-frontend"
        if self.service.name is None:
            self.service.name = default_name
        if self.service.discovery_name is None:
            self.service.discovery_name = default_name
        return self

    @property
    def namespace_name(self) -> str:
        return f"{self.id_prefix}-service"

    @classmethod
    def from_context(cls, node: Node) -> "BlueGreenTopology":
        """
        Build the topology from CDK context values, falling back to the model defaults for
        anything that is not set.
        """
        def ctx(key, default=None):
            value = node.try_get_context(key)
            return default if value is None else value

        container_port = ctx("containerPort", 3000)
        listener_port = ctx("listenerPort", 80)
        test_listener_port = ctx("testListenerPort", 9000)
        health_check_path = ctx("healthCheckPath", "/health")
        ingress_ports = ctx("albIngressPorts", [listener_port, test_listener_port])

        values = {
            "id_prefix": ctx("idPrefix"),
            "user_name": ctx("userName"),
            "is_production": ctx("isProduction"),
            "enable_container_insights": ctx("enableContainerInsights"),
            "cluster_name": ctx("clusterName"),
            "single_stack": ctx("singleStack"),
            "network": {
                "cidr": ctx("vpcCidr"),
                "max_azs": ctx("maxAzs"),
                "subnet_cidr_mask": ctx("subnetCidrMask"),
            },
            "ingress": ingress_ports,
            "container": {
                "repository_arn": ctx("frontendRepositoryArn"),
                "image_tag": ctx("frontendImageTag"),
                "cpu": ctx("cpu"),
                "memory_limit_mib": ctx("memoryLimitMiB"),
                "port_mappings": [{"container_port": container_port}],
                "environment": ctx("frontendEnvironment"),
            },
            "service": {
                "desired_count": ctx("desiredCount"),
                "enable_execute_command": ctx("enableExecuteCommand"),
            },
            "blue": {
                "listener_port": listener_port,
                "target_port": container_port,
                "health_check_path": health_check_path,
            },
            "green": {
                "listener_port": test_listener_port,
                "target_port": container_port,
                "health_check_path": health_check_path,
            },
            "release": {
                "deployment_config": ctx("deploymentConfig"),
                "auto_rollback": ctx("autoRollback"),
                "termination_wait_minutes": ctx("terminationWaitMinutes"),
            },
        }
        return cls.model_validate(_drop_unset(values))


def _drop_unset(values: dict) -> dict:
    """Remove None entries so the model defaults apply."""
    cleaned = {}
    for key, value in values.items():
        if isinstance(value, dict):
            value = _drop_unset(value)
        if value is not None:
            cleaned[key] = value
    return cleaned


def _split_ports(value) -> list:
    if isinstance(value, int):
        return [value]
    value = value.strip()
    if value.startswith("["):
        return json.loads(value)
    return [port.strip() for port in value.split(",") if port.strip()]
