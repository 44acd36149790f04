# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
import click
import botocore.exceptions
from os import makedirs

# deployment file to aws
from .spec2aws import SpecError
from .spec2aws.spec_parser import read_deployment
from .spec2aws.ecs_output import ecs_print
from .spec2aws.cfn_output import cfn_print
from .spec2aws.aws_provisioner import apply_deployment, destroy_deployment

# aws to deployment file
from .aws2spec.aws_reader import ecs_cluster_extract
from .aws2spec.spec_writer import spec_writer

import logging
import logging.config
LOGGING_CONFIG = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'standard': {
            'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        },
    },
    'handlers': {
        'default': {
            'level': 'INFO',
            'formatter': 'standard',
            'class': 'logging.StreamHandler',
            'stream': 'ext://sys.stdout',  # Default is stderr
        },
    },
    'loggers': {
        '': {  # root logger
            'handlers': ['default'],
            'level': 'WARNING',
            'propagate': False
        }
    }
}
logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger()

MODES = ["render", "cfn", "apply", "destroy", "export"]

def load_plan(source, options):
    if len(source) <= 0:
        raise click.UsageError("--source is required in this mode")
    try:
        plan = read_deployment(source)
    except SpecError as error:
        raise click.UsageError("%s: %s"%(source, error))
    if len(options.get("region_name", "")) > 0:
        plan["cluster"]["region"] = options["region_name"]
    return plan

def render_cli_handler(source, options):
    plan = load_plan(source, options)
    try:
        ecs_print(plan, options)
    except SpecError as error:
        raise click.UsageError("%s: %s"%(source, error))

def cfn_cli_handler(source, options):
    plan = load_plan(source, options)
    cfn_print(plan, options)

def apply_cli_handler(source, options):
    plan = load_plan(source, options)
    apply_deployment(plan, options)

def destroy_cli_handler(source, options):
    plan = load_plan(source, options)
    destroy_deployment(plan, options)

def export_cli_handler(options):
    cluster_name, records = ecs_cluster_extract(options)
    if len(records) <= 0:
        logger.warning("Found no Fargate services in %s cluster"%(cluster_name))
    spec_writer(cluster_name, records, options)


# Click cli entry point function
@click.command()
@click.option("-m","--mode", default="render", type=click.Choice(MODES, case_sensitive=False), help="render - request payloads and aws cli script, cfn - CloudFormation template, apply/destroy - provision or remove with the AWS APIs, export - write a deployment file from a running cluster")
@click.option("-s", "--source", default="", type=str, help="Path to the YAML deployment file")
@click.option("-l", "--log_level", default="WARNING", type=click.Choice(["DEBUG","INFO","WARNING","ERROR","CRITICAL"], case_sensitive=False), help="Select log level")
@click.option("--td_file",default="taskdefinition.json", help="File to write ECS task definition json")
@click.option("--sd_file",default="servicedefinition.json", help="File to write ECS service definition json")
@click.option("--input_file", default="", help="File with additional input parameters for task, container, and/or services")
@click.option("--cfn_format", default="yaml", type=click.Choice(["yaml","json"], case_sensitive=False), help="CloudFormation template format")
@click.option("--spec_file", default="deployment.yaml", help="File to write the exported deployment file")
@click.option("-o", "--output_directory", default="./output", help="Path to output directory")
@click.option("--ecs_cluster_name", default="", type=str, help="ECS cluster to export services from")
@click.option("--region_name", default="", type=str, help="AWS region, overrides the deployment file")
@click.option("--wait", is_flag=True, help="Wait for services to become stable after apply")
def main(mode, source, log_level, td_file, sd_file, input_file, cfn_format, spec_file, output_directory, ecs_cluster_name, region_name, wait):
    logger.setLevel(getattr(logging,log_level.upper()))
    for handler in logger.handlers:
        handler.setLevel(getattr(logging,log_level.upper()))
    mode = mode.lower()
    if mode in ("render", "cfn", "export"):
        try:
            makedirs(output_directory)
        except FileExistsError:
            pass
    options = {
        "td_file": td_file,
        "sd_file": sd_file,
        "input_file": input_file,
        "cfn_format": cfn_format.lower(),
        "spec_file": spec_file,
        "output_directory": output_directory,
        "cluster_name": ecs_cluster_name,
        "region_name": region_name,
        "wait": wait
        }
    try:
        if mode == "render":
            render_cli_handler(source, options)
        elif mode == "cfn":
            cfn_cli_handler(source, options)
        elif mode == "apply":
            apply_cli_handler(source, options)
        elif mode == "destroy":
            destroy_cli_handler(source, options)
        elif mode == "export":
            export_cli_handler(options)
    except (botocore.exceptions.ClientError, botocore.exceptions.WaiterError, botocore.exceptions.NoCredentialsError) as error:
        raise click.ClickException(str(error))
