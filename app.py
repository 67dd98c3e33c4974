#!/usr/bin/env python3
import os

from aws_cdk import App, Aspects
from cdk_nag import AwsSolutionsChecks
import argparse
import json
from pathlib import Path

from handson_cdk.infrastructure_stack import InfrastructureStack
from handson_cdk.frontend_service_stack import FrontendServiceStack
from handson_cdk.handson_stack import HandsonEcsCicdStack
from handson_cdk.topology import BlueGreenTopology
from handson_cdk.utils import print_nag_findings

# Parse command-line arguments
parser = argparse.ArgumentParser()
parser.add_argument("--context", type=str, help="Path to cdk.json")
args = parser.parse_args()

# Load context from cdk.json if provided
if args.context:
    context_path = Path(args.context)
else:
    context_path = Path("cdk.json")
context = json.loads(context_path.read_text())["context"]

account = os.environ.get("CDK_DEFAULT_ACCOUNT")
region = os.environ.get("CDK_DEFAULT_REGION")

app = App(context=context)

topology = BlueGreenTopology.from_context(app.node)
id_prefix = topology.id_prefix
env = {"account": account, "region": region}

stacks = []
if topology.single_stack:
    print(f"Declaring {id_prefix} as a single stack")
    stacks.append(HandsonEcsCicdStack(app, f"{id_prefix}-HandsonEcsCicdStack", topology=topology, env=env))
else:
    infra = InfrastructureStack(app, f"{id_prefix}-VpcStack", topology=topology, env=env)

    frontend = FrontendServiceStack(
        app,
        f"{id_prefix}-FrontEcsStack",
        topology=topology,
        env=env,
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
    stacks.extend([infra, frontend])

Aspects.of(app).add(AwsSolutionsChecks(verbose=True))

app.synth()

for stack in stacks:
    print_nag_findings(stack)
