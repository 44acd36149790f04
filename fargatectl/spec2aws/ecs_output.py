# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
import json
import os
import re
import copy
import shlex
import stat
from . import SpecError, ecs_objects
from ..utils import dict_check, default_region, write_json
import logging

logger = logging.getLogger(__name__)

# Build the request payloads for every create/register call.
# The same payloads are written as --cli-input-json files by render
# and passed as keyword arguments to boto3 by apply.
# ARNs that only exist once a resource is created are taken from arns
# and default to "" (the rendered script passes them on the command line).

def ecs_tags(tags):
    return [{"key": str(k), "value": str(v)} for k, v in tags.items()]

def elb_tags(tags):
    return [{"Key": str(k), "Value": str(v)} for k, v in tags.items()]

# elbv2 rejects an empty Tags list
def drop_empty_tags(obj):
    if "Tags" in obj and len(obj["Tags"]) == 0:
        obj.pop("Tags")
    return obj

def merged_tags(*tag_dicts):
    output_dict = {}
    for tags in tag_dicts:
        if dict_check(tags):
            output_dict.update(tags)
    return output_dict

def get_cluster_def(plan):
    cluster = plan["cluster"]
    cluster_def = copy.deepcopy(ecs_objects.CLUSTER_DEF)
    cluster_def["clusterName"] = cluster["name"]
    cluster_def["capacityProviders"] = list(cluster["capacity_providers"])
    cluster_def["defaultCapacityProviderStrategy"] = [{"capacityProvider": cluster["capacity_providers"][0], "weight": 1, "base": 0}]
    cluster_def["settings"] = [{"name": "containerInsights", "value": "enabled" if cluster["container_insights"] else "disabled"}]
    cluster_def["tags"] = ecs_tags(plan.get("tags", {}))
    return cluster_def

def get_target_group_def(plan, tg_key):
    tg = plan["target_groups"][tg_key]
    hc = tg["health_check"]
    tg_def = copy.deepcopy(ecs_objects.TARGET_GROUP_DEF)
    tg_def["Name"] = tg["name"]
    tg_def["Protocol"] = tg["protocol"]
    tg_def["Port"] = tg["port"]
    tg_def["VpcId"] = plan["network"]["vpc_id"]
    tg_def["TargetType"] = tg["target_type"]
    tg_def["HealthCheckProtocol"] = hc["protocol"]
    tg_def["HealthCheckPath"] = hc["path"]
    tg_def["HealthCheckIntervalSeconds"] = hc["interval"]
    tg_def["HealthCheckTimeoutSeconds"] = hc["timeout"]
    tg_def["HealthyThresholdCount"] = hc["healthy_threshold"]
    tg_def["UnhealthyThresholdCount"] = hc["unhealthy_threshold"]
    tg_def["Matcher"] = {"HttpCode": hc["matcher"]}
    tg_def["Tags"] = elb_tags(merged_tags(plan.get("tags"), tg["tags"]))
    return drop_empty_tags(tg_def)

def get_load_balancer_def(plan):
    lb = plan["load_balancer"]
    lb_def = copy.deepcopy(ecs_objects.LOAD_BALANCER_DEF)
    lb_def["Name"] = lb["name"]
    lb_def["Subnets"] = list(lb["subnets"])
    lb_def["SecurityGroups"] = list(lb["security_groups"])
    lb_def["Scheme"] = lb["scheme"]
    lb_def["Tags"] = elb_tags(plan.get("tags", {}))
    if len(lb_def["SecurityGroups"]) == 0:
        lb_def.pop("SecurityGroups")
    return drop_empty_tags(lb_def)

def get_action(action, arns):
    action_type = action.get("type")
    if action_type == "forward":
        return {"Type": "forward", "TargetGroupArn": arns.get(action["target_group_key"], "")}
    if action_type == "redirect":
        return {"Type": "redirect", "RedirectConfig": {
            "Protocol": action["protocol"],
            "Port": str(action["port"]),
            "StatusCode": action["status_code"]}}
    return {"Type": "fixed-response", "FixedResponseConfig": {
        "StatusCode": action["status_code"],
        "ContentType": action["content_type"],
        "MessageBody": action["message_body"]}}

def get_listener_def(plan, listener_name, arns={}):
    listener = plan["listeners"][listener_name]
    listener_def = copy.deepcopy(ecs_objects.LISTENER_DEF)
    listener_def["LoadBalancerArn"] = arns.get("load_balancer", "")
    listener_def["Protocol"] = listener["protocol"]
    listener_def["Port"] = listener["port"]
    listener_def["DefaultActions"] = [get_action(listener["default_action"], arns)]
    if listener["protocol"] == "HTTPS":
        listener_def["Certificates"] = [{"CertificateArn": listener["certificate_arn"]}]
        listener_def["SslPolicy"] = listener["ssl_policy"]
    return listener_def

def get_conditions(conditions):
    return_conditions = []
    for c in conditions:
        if c["field"] == "host-header":
            return_conditions.append({"Field": "host-header", "HostHeaderConfig": {"Values": list(c["values"])}})
        else:
            return_conditions.append({"Field": "path-pattern", "PathPatternConfig": {"Values": list(c["values"])}})
    return return_conditions

def get_rule_def(plan, rule_name, arns={}):
    rule = plan["listener_rules"][rule_name]
    rule_def = copy.deepcopy(ecs_objects.RULE_DEF)
    rule_def["ListenerArn"] = arns.get(rule["listener_name"], "")
    rule_def["Priority"] = rule["priority"]
    rule_def["Conditions"] = get_conditions(rule["conditions"])
    rule_def["Actions"] = [get_action({"type": "forward", "target_group_key": rule["target_group_key"]}, arns)]
    rule_def["Tags"] = elb_tags(merged_tags(plan.get("tags"), {"rule": rule_name}))
    return rule_def

def get_task_def(plan, svc, additional_input=[]):
    task_def = copy.deepcopy(ecs_objects.TASK_DEF)
    task_def["family"] = svc["family"]
    task_def["cpu"] = str(svc["cpu"])
    task_def["memory"] = str(svc["memory"])
    if len(svc["execution_role_arn"]) > 0:
        task_def["executionRoleArn"] = svc["execution_role_arn"]
    if len(svc["task_role_arn"]) > 0:
        task_def["taskRoleArn"] = svc["task_role_arn"]
    task_def["tags"] = ecs_tags(merged_tags(plan.get("tags"), svc["tags"]))

    task_container = copy.deepcopy(ecs_objects.CONTAINER_DEF)
    task_container["name"] = svc["name"]
    task_container["image"] = svc["image"]
    task_container["portMappings"][0]["containerPort"] = svc["container_port"]
    task_container["environment"] = copy.deepcopy(svc["environment"])
    task_container["secrets"] = copy.deepcopy(svc["secrets"])
    if len(svc["command"]) > 0:
        task_container["command"] = list(svc["command"])
    if len(svc["log_group"]) > 0:
        log_config = copy.deepcopy(ecs_objects.LOG_CONFIGURATION)
        log_config["options"]["awslogs-group"] = svc["log_group"]
        log_config["options"]["awslogs-region"] = plan["cluster"]["region"]
        log_config["options"]["awslogs-stream-prefix"] = svc["name"]
        if len(plan["cluster"]["region"]) == 0:
            log_config["options"].pop("awslogs-region")
        task_container["logConfiguration"] = log_config
    task_def["containerDefinitions"].append(task_container)

    for item in additional_input:
        task_def_input = item.get("task_def_input", None)
        container_def_input = item.get("container_def_input", None)
        if task_def_input is not None:
            if task_def_input.get("family")==task_def["family"]:
                task_def.update(task_def_input)
        if container_def_input is not None:
            for c in task_def["containerDefinitions"]:
                for c_input in container_def_input:
                    if c["name"] == c_input.get("name"):
                        c.update(c_input)
                        break
    return task_def

def service_target_group_key(plan, svc):
    for tg_key, tg in plan["target_groups"].items():
        if tg["service"] == svc["name"]:
            return tg_key
    return None

def get_svc_def(plan, svc, additional_input=[], arns={}):
    svc_def = copy.deepcopy(ecs_objects.SERVICE_DEF)
    cluster = plan["cluster"]
    network = plan["network"]
    svc_def["cluster"] = cluster["name"]
    svc_def["serviceName"] = svc["name"]
    svc_def["taskDefinition"] = arns.get(svc["family"], svc["family"])
    svc_def["desiredCount"] = svc["desired_count"]
    svc_def["tags"] = ecs_tags(merged_tags(plan.get("tags"), svc["tags"]))
    vpc_config = svc_def["networkConfiguration"]["awsvpcConfiguration"]
    vpc_config["subnets"] = list(network["subnets"])
    vpc_config["securityGroups"] = list(network["security_groups"])
    vpc_config["assignPublicIp"] = network["assign_public_ip"]
    if len(vpc_config["securityGroups"]) == 0:
        vpc_config.pop("securityGroups")

    # a capacity provider strategy and a launch type are mutually exclusive
    if cluster["capacity_providers"] == ["FARGATE"]:
        svc_def["launchType"] = "FARGATE"
        svc_def["platformVersion"] = "LATEST"
    else:
        svc_def["capacityProviderStrategy"] = [{"capacityProvider": p, "weight": 1} for p in cluster["capacity_providers"]]

    tg_key = service_target_group_key(plan, svc)
    svc_def["loadBalancers"] = [{
        "targetGroupArn": arns.get(tg_key, ""),
        "containerName": svc["name"],
        "containerPort": svc["container_port"]
    }]

    for item in additional_input:
        service_def_input = item.get("service_def_input", None)
        if service_def_input is not None:
            if service_def_input.get("serviceName")==svc_def["serviceName"]:
                svc_def.update(service_def_input)
                break
    return svc_def

def scaling_resource_id(plan, svc):
    return "service/"+plan["cluster"]["name"]+"/"+svc["name"]

def get_scaling_defs(plan, svc):
    autoscaling = svc.get("autoscaling")
    if not dict_check(autoscaling): return None, []
    resource_id = scaling_resource_id(plan, svc)
    target_def = copy.deepcopy(ecs_objects.SCALABLE_TARGET_DEF)
    target_def["ResourceId"] = resource_id
    target_def["MinCapacity"] = autoscaling["min_capacity"]
    target_def["MaxCapacity"] = autoscaling["max_capacity"]
    policy_defs = []
    for target, (suffix, metric_type) in ecs_objects.SCALING_METRICS.items():
        value = autoscaling.get(target)
        if value is None: continue
        policy_def = copy.deepcopy(ecs_objects.SCALING_POLICY_DEF)
        policy_def["PolicyName"] = svc["name"]+"-"+suffix+"-target-tracking"
        policy_def["ResourceId"] = resource_id
        config = policy_def["TargetTrackingScalingPolicyConfiguration"]
        config["TargetValue"] = float(value)
        config["PredefinedMetricSpecification"]["PredefinedMetricType"] = metric_type
        config["ScaleInCooldown"] = autoscaling["scale_in_cooldown"]
        config["ScaleOutCooldown"] = autoscaling["scale_out_cooldown"]
        policy_defs.append(policy_def)
    return target_def, policy_defs

def read_additional_input(input_file):
    additional_input = []
    if input_file is not None and len(input_file) > 0:
        with open(input_file,'r') as ipf:
            additional_input = json.loads(ipf.read())
    return additional_input

# shell variable names for ARNs captured in deploy.sh,
# case is kept so that Web-80 and web-80 stay distinct
def shell_var(prefix, name):
    return prefix+"_"+re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_")

def aws_cmd(region, *args):
    cmd = ["aws"]+[a for a in args]
    if len(region) > 0:
        cmd += ["--region", region]
    return " ".join(cmd)

def file_arg(path):
    return "file://"+shlex.quote(path)

def forward_arg(tg_var):
    return "Type=forward,TargetGroupArn=\"$"+tg_var+"\""

# The aws cli lets command line arguments override --cli-input-json values,
# ARNs created earlier in the script are passed that way
def get_deploy_script(plan, files):
    region = plan["cluster"]["region"]
    lines = ["#!/usr/bin/env bash",
             "# Provisions cluster "+plan["cluster"]["name"]+" behind load balancer "+plan["load_balancer"]["name"],
             "set -euo pipefail",
             "cd \"$(dirname \"$0\")\"",
             ""]
    lines.append(aws_cmd(region, "ecs", "create-cluster", "--cli-input-json", file_arg(files["cluster"])))
    lines.append("")
    tg_vars = {}
    for tg_key in plan["target_groups"].keys():
        tg_vars[tg_key] = shell_var("TG", plan["target_groups"][tg_key]["name"])
        lines.append(tg_vars[tg_key]+"=$("+aws_cmd(region, "elbv2", "create-target-group",
            "--cli-input-json", file_arg(files["target_groups"][tg_key]),
            "--query", "'TargetGroups[0].TargetGroupArn'", "--output", "text")+")")
    lines.append("")
    lines.append("LB_ARN=$("+aws_cmd(region, "elbv2", "create-load-balancer",
        "--cli-input-json", file_arg(files["load_balancer"]),
        "--query", "'LoadBalancers[0].LoadBalancerArn'", "--output", "text")+")")
    lines.append(aws_cmd(region, "elbv2", "wait", "load-balancer-available", "--load-balancer-arns", "\"$LB_ARN\""))
    lines.append("")
    listener_vars = {}
    for listener_name, listener in plan["listeners"].items():
        listener_vars[listener_name] = shell_var("LISTENER", listener["protocol"]+"_"+str(listener["port"]))
        args = ["elbv2", "create-listener", "--cli-input-json", file_arg(files["listeners"][listener_name]),
                "--load-balancer-arn", "\"$LB_ARN\""]
        action = listener["default_action"]
        if action.get("type") == "forward":
            args += ["--default-actions", forward_arg(tg_vars[action["target_group_key"]])]
        args += ["--query", "'Listeners[0].ListenerArn'", "--output", "text"]
        lines.append(listener_vars[listener_name]+"=$("+aws_cmd(region, *args)+")")
    lines.append("")
    for rule_name, rule in plan["listener_rules"].items():
        lines.append(aws_cmd(region, "elbv2", "create-rule", "--cli-input-json", file_arg(files["listener_rules"][rule_name]),
            "--listener-arn", "\"$"+listener_vars[rule["listener_name"]]+"\"",
            "--actions", forward_arg(tg_vars[rule["target_group_key"]]), "> /dev/null"))
    lines.append("")
    for svc in plan["services"]:
        svc_files = files["services"][svc["name"]]
        lines.append(aws_cmd(region, "ecs", "register-task-definition", "--cli-input-json", file_arg(svc_files["task_def"]), "> /dev/null"))
        tg_key = service_target_group_key(plan, svc)
        lb_arg = "targetGroupArn=\"$"+tg_vars[tg_key]+"\",containerName="+svc["name"]+",containerPort="+str(svc["container_port"])
        lines.append(aws_cmd(region, "ecs", "create-service", "--cli-input-json", file_arg(svc_files["svc_def"]),
            "--load-balancers", lb_arg, "> /dev/null"))
        if "scalable_target" in svc_files:
            lines.append(aws_cmd(region, "application-autoscaling", "register-scalable-target",
                "--cli-input-json", file_arg(svc_files["scalable_target"])))
            for policy_file in svc_files["scaling_policies"]:
                lines.append(aws_cmd(region, "application-autoscaling", "put-scaling-policy",
                    "--cli-input-json", file_arg(policy_file), "> /dev/null"))
        lines.append("")
    lines.append("aws elbv2 describe-load-balancers --names "+shlex.quote(plan["load_balancer"]["name"])
                 +" --query 'LoadBalancers[0].DNSName' --output text"+(" --region "+region if len(region) > 0 else ""))
    return "\n".join(lines)+"\n"

# the rendered files are static, so awslogs-region and --region are
# resolved now from the caller's AWS configuration
def with_render_region(plan):
    if len(plan["cluster"]["region"]) > 0:
        return plan
    region_name = default_region()
    if len(region_name) == 0:
        log_services = [svc["name"] for svc in plan["services"] if len(svc["log_group"]) > 0]
        if len(log_services) > 0:
            raise SpecError("cluster.region is required to render the awslogs configuration of %s, set it or pass --region_name"%(", ".join(log_services)))
        return plan
    logger.info("Rendering for region %s from the AWS configuration"%(region_name))
    plan = copy.deepcopy(plan)
    plan["cluster"]["region"] = region_name
    return plan

def make_dirs(path):
    try:
        os.makedirs(path)
    except FileExistsError:
        pass

# options needs output_directory and the task and service definition file names;
# input_file optionally points to additional json parameters for task/container/service
def ecs_print(plan, options):
    plan = with_render_region(plan)
    additional_input = read_additional_input(options.get("input_file"))
    output_dir = os.path.join(options.get("output_directory"), plan["cluster"]["name"])
    make_dirs(output_dir)
    # paths in deploy.sh are relative to output_dir
    files = {"target_groups": {}, "listeners": {}, "listener_rules": {}, "services": {}}

    files["cluster"] = "cluster.json"
    write_json(os.path.join(output_dir, files["cluster"]), get_cluster_def(plan))
    files["load_balancer"] = "load_balancer.json"
    write_json(os.path.join(output_dir, files["load_balancer"]), get_load_balancer_def(plan))

    make_dirs(os.path.join(output_dir, "listeners"))
    for listener_name in plan["listeners"].keys():
        files["listeners"][listener_name] = os.path.join("listeners", listener_name+".json")
        write_json(os.path.join(output_dir, files["listeners"][listener_name]), get_listener_def(plan, listener_name))

    make_dirs(os.path.join(output_dir, "rules"))
    for rule_name in plan["listener_rules"].keys():
        files["listener_rules"][rule_name] = os.path.join("rules", rule_name+".json")
        write_json(os.path.join(output_dir, files["listener_rules"][rule_name]), get_rule_def(plan, rule_name))

    for svc in plan["services"]:
        svc_dir = os.path.join("services", svc["name"])
        make_dirs(os.path.join(output_dir, svc_dir))
        svc_files = {}
        tg_key = service_target_group_key(plan, svc)
        files["target_groups"][tg_key] = os.path.join(svc_dir, "targetgroup.json")
        write_json(os.path.join(output_dir, files["target_groups"][tg_key]), get_target_group_def(plan, tg_key))

        svc_files["task_def"] = os.path.join(svc_dir, options.get("td_file", "taskdefinition.json"))
        write_json(os.path.join(output_dir, svc_files["task_def"]), get_task_def(plan, svc, additional_input))
        svc_files["svc_def"] = os.path.join(svc_dir, options.get("sd_file", "servicedefinition.json"))
        write_json(os.path.join(output_dir, svc_files["svc_def"]), get_svc_def(plan, svc, additional_input))

        target_def, policy_defs = get_scaling_defs(plan, svc)
        if target_def is not None:
            svc_files["scalable_target"] = os.path.join(svc_dir, "scalabletarget.json")
            write_json(os.path.join(output_dir, svc_files["scalable_target"]), target_def)
            svc_files["scaling_policies"] = []
            for policy_def in policy_defs:
                policy_file = os.path.join(svc_dir, policy_def["PolicyName"]+".json")
                write_json(os.path.join(output_dir, policy_file), policy_def)
                svc_files["scaling_policies"].append(policy_file)
        files["services"][svc["name"]] = svc_files

    script_file = os.path.join(output_dir, "deploy.sh")
    logger.info("Writing deploy script in %s"%(script_file))
    with open(script_file, 'w') as sf:
        sf.write(get_deploy_script(plan, files))
    os.chmod(script_file, os.stat(script_file).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    logger.log(100, "Please see %s directory for request payloads and deploy.sh"%(output_dir))
    return files
