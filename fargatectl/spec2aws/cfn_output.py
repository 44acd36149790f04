# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
import json
import os
import re
from .ecs_output import get_action, get_conditions, service_target_group_key, make_dirs
from ..utils import dict_check, write_yaml
import logging

logger = logging.getLogger(__name__)

# CloudFormation rendition of the same plan that render and apply use.
# Listener actions and rule conditions share their shape with the elbv2 API,
# so the payload builders are reused with Ref objects in place of ARNs.

LOG_RETENTION_DAYS = 30

def logical_id(*parts):
    words = []
    for p in parts:
        words += [w for w in re.split(r"[^a-zA-Z0-9]+", str(p)) if len(w) > 0]
    return "".join(w[0].upper()+w[1:] for w in words)

def cfn_tags(tags):
    return [{"Key": str(k), "Value": str(v)} for k, v in tags.items()]

def cluster_resource(plan):
    cluster = plan["cluster"]
    props = {
        "ClusterName": cluster["name"],
        "CapacityProviders": list(cluster["capacity_providers"]),
        "DefaultCapacityProviderStrategy": [{"CapacityProvider": cluster["capacity_providers"][0], "Weight": 1}],
        "ClusterSettings": [{"Name": "containerInsights", "Value": "enabled" if cluster["container_insights"] else "disabled"}]
    }
    if dict_check(plan.get("tags")):
        props["Tags"] = cfn_tags(plan["tags"])
    return {"Type": "AWS::ECS::Cluster", "Properties": props}

def load_balancer_resource(plan):
    lb = plan["load_balancer"]
    props = {
        "Name": lb["name"],
        "Scheme": lb["scheme"],
        "Type": "application",
        "Subnets": list(lb["subnets"]),
        "LoadBalancerAttributes": [{"Key": "idle_timeout.timeout_seconds", "Value": str(lb["idle_timeout"])}]
    }
    if len(lb["security_groups"]) > 0:
        props["SecurityGroups"] = list(lb["security_groups"])
    if dict_check(plan.get("tags")):
        props["Tags"] = cfn_tags(plan["tags"])
    return {"Type": "AWS::ElasticLoadBalancingV2::LoadBalancer", "Properties": props}

def target_group_resource(plan, tg):
    hc = tg["health_check"]
    props = {
        "Name": tg["name"],
        "Port": tg["port"],
        "Protocol": tg["protocol"],
        "TargetType": tg["target_type"],
        "VpcId": plan["network"]["vpc_id"],
        "HealthCheckEnabled": True,
        "HealthCheckPath": hc["path"],
        "HealthCheckProtocol": hc["protocol"],
        "HealthCheckIntervalSeconds": hc["interval"],
        "HealthCheckTimeoutSeconds": hc["timeout"],
        "HealthyThresholdCount": hc["healthy_threshold"],
        "UnhealthyThresholdCount": hc["unhealthy_threshold"],
        "Matcher": {"HttpCode": hc["matcher"]}
    }
    return {"Type": "AWS::ElasticLoadBalancingV2::TargetGroup", "Properties": props}

def listener_resource(listener, lb_id, refs):
    props = {
        "LoadBalancerArn": {"Ref": lb_id},
        "Port": listener["port"],
        "Protocol": listener["protocol"],
        "DefaultActions": [get_action(listener["default_action"], refs)]
    }
    if listener["protocol"] == "HTTPS":
        props["Certificates"] = [{"CertificateArn": listener["certificate_arn"]}]
        props["SslPolicy"] = listener["ssl_policy"]
    return {"Type": "AWS::ElasticLoadBalancingV2::Listener", "Properties": props}

def listener_rule_resource(rule, refs):
    props = {
        "ListenerArn": refs[rule["listener_name"]],
        "Priority": rule["priority"],
        "Conditions": get_conditions(rule["conditions"]),
        "Actions": [get_action({"type": "forward", "target_group_key": rule["target_group_key"]}, refs)]
    }
    return {"Type": "AWS::ElasticLoadBalancingV2::ListenerRule", "Properties": props}

def container_definition(plan, svc, log_group_id):
    container = {
        "Name": svc["name"],
        "Image": svc["image"],
        "Essential": True,
        "PortMappings": [{"ContainerPort": svc["container_port"], "Protocol": "tcp"}]
    }
    if len(svc["environment"]) > 0:
        container["Environment"] = [{"Name": e["name"], "Value": e["value"]} for e in svc["environment"]]
    if len(svc["secrets"]) > 0:
        container["Secrets"] = [{"Name": s["name"], "ValueFrom": s["valueFrom"]} for s in svc["secrets"]]
    if len(svc["command"]) > 0:
        container["Command"] = list(svc["command"])
    if log_group_id is not None:
        container["LogConfiguration"] = {
            "LogDriver": "awslogs",
            "Options": {
                "awslogs-group": {"Ref": log_group_id},
                "awslogs-region": {"Ref": "AWS::Region"},
                "awslogs-stream-prefix": svc["name"]
            }
        }
    return container

def task_definition_resource(plan, svc, log_group_id):
    props = {
        "Family": svc["family"],
        "Cpu": str(svc["cpu"]),
        "Memory": str(svc["memory"]),
        "NetworkMode": "awsvpc",
        "RequiresCompatibilities": ["FARGATE"],
        "ContainerDefinitions": [container_definition(plan, svc, log_group_id)]
    }
    if len(svc["execution_role_arn"]) > 0:
        props["ExecutionRoleArn"] = svc["execution_role_arn"]
    if len(svc["task_role_arn"]) > 0:
        props["TaskRoleArn"] = svc["task_role_arn"]
    return {"Type": "AWS::ECS::TaskDefinition", "Properties": props}

def service_resource(plan, svc, ids, refs, depends_on):
    network = plan["network"]
    cluster = plan["cluster"]
    vpc_config = {"Subnets": list(network["subnets"]), "AssignPublicIp": network["assign_public_ip"]}
    if len(network["security_groups"]) > 0:
        vpc_config["SecurityGroups"] = list(network["security_groups"])
    props = {
        "ServiceName": svc["name"],
        "Cluster": {"Ref": ids["cluster"]},
        "TaskDefinition": {"Ref": ids["task"]},
        "DesiredCount": svc["desired_count"],
        "NetworkConfiguration": {"AwsvpcConfiguration": vpc_config},
        "LoadBalancers": [{
            "ContainerName": svc["name"],
            "ContainerPort": svc["container_port"],
            "TargetGroupArn": refs[service_target_group_key(plan, svc)]
        }],
        "HealthCheckGracePeriodSeconds": 60,
        "DeploymentConfiguration": {
            "MaximumPercent": 200,
            "MinimumHealthyPercent": 100,
            "DeploymentCircuitBreaker": {"Enable": True, "Rollback": True}
        },
        "EnableECSManagedTags": True,
        "PropagateTags": "SERVICE"
    }
    if cluster["capacity_providers"] == ["FARGATE"]:
        props["LaunchType"] = "FARGATE"
        props["PlatformVersion"] = "LATEST"
    else:
        props["CapacityProviderStrategy"] = [{"CapacityProvider": p, "Weight": 1} for p in cluster["capacity_providers"]]
    tags = dict(plan.get("tags") or {})
    tags.update(svc["tags"])
    if dict_check(tags):
        props["Tags"] = cfn_tags(tags)
    # the target group must be attached to a listener before the service registers targets
    return {"Type": "AWS::ECS::Service", "DependsOn": list(depends_on), "Properties": props}

def scaling_resources(plan, svc, ids):
    autoscaling = svc.get("autoscaling")
    resources = {}
    if not dict_check(autoscaling): return resources
    target_id = logical_id(svc["name"], "ScalableTarget")
    resources[target_id] = {
        "Type": "AWS::ApplicationAutoScaling::ScalableTarget",
        "Properties": {
            "MinCapacity": autoscaling["min_capacity"],
            "MaxCapacity": autoscaling["max_capacity"],
            "ResourceId": {"Fn::Join": ["/", ["service", {"Ref": ids["cluster"]}, {"Fn::GetAtt": [ids["service"], "Name"]}]]},
            "ScalableDimension": "ecs:service:DesiredCount",
            "ServiceNamespace": "ecs"
        }
    }
    metrics = {"target_cpu": ("Cpu", "ECSServiceAverageCPUUtilization"),
               "target_memory": ("Memory", "ECSServiceAverageMemoryUtilization")}
    for target, (suffix, metric_type) in metrics.items():
        value = autoscaling.get(target)
        if value is None: continue
        resources[logical_id(svc["name"], suffix, "ScalingPolicy")] = {
            "Type": "AWS::ApplicationAutoScaling::ScalingPolicy",
            "Properties": {
                "PolicyName": svc["name"]+"-"+suffix.lower()+"-target-tracking",
                "PolicyType": "TargetTrackingScaling",
                "ScalingTargetId": {"Ref": target_id},
                "TargetTrackingScalingPolicyConfiguration": {
                    "TargetValue": float(value),
                    "PredefinedMetricSpecification": {"PredefinedMetricType": metric_type},
                    "ScaleInCooldown": autoscaling["scale_in_cooldown"],
                    "ScaleOutCooldown": autoscaling["scale_out_cooldown"]
                }
            }
        }
    return resources

def build_template(plan):
    resources = {}
    outputs = {}
    refs = {}
    cluster_id = logical_id(plan["cluster"]["name"], "Cluster")
    resources[cluster_id] = cluster_resource(plan)
    lb_id = logical_id(plan["load_balancer"]["name"], "LoadBalancer")
    resources[lb_id] = load_balancer_resource(plan)

    for tg_key, tg in plan["target_groups"].items():
        tg_id = logical_id(tg["name"], "TargetGroup")
        resources[tg_id] = target_group_resource(plan, tg)
        refs[tg_key] = {"Ref": tg_id}

    listener_ids = []
    for listener_name, listener in plan["listeners"].items():
        listener_id = logical_id(listener["protocol"], listener["port"], "Listener")
        refs[listener_name] = {"Ref": listener_id}
        resources[listener_id] = listener_resource(listener, lb_id, refs)
        listener_ids.append(listener_id)

    rule_ids = {}
    for rule_name, rule in plan["listener_rules"].items():
        rule_id = logical_id(rule_name)
        resources[rule_id] = listener_rule_resource(rule, refs)
        rule_ids.setdefault(rule["target_group_key"], []).append(rule_id)

    for svc in plan["services"]:
        ids = {"cluster": cluster_id,
               "task": logical_id(svc["name"], "TaskDefinition"),
               "service": logical_id(svc["name"], "Service")}
        log_group_id = None
        if len(svc["log_group"]) > 0:
            log_group_id = logical_id(svc["name"], "LogGroup")
            resources[log_group_id] = {
                "Type": "AWS::Logs::LogGroup",
                "Properties": {"LogGroupName": svc["log_group"], "RetentionInDays": LOG_RETENTION_DAYS}
            }
        resources[ids["task"]] = task_definition_resource(plan, svc, log_group_id)
        resources[ids["service"]] = service_resource(plan, svc, ids, refs,
            listener_ids+rule_ids.get(service_target_group_key(plan, svc), []))
        resources.update(scaling_resources(plan, svc, ids))
        outputs[logical_id(svc["name"], "ServiceName")] = {"Value": {"Fn::GetAtt": [ids["service"], "Name"]}}

    outputs["ClusterName"] = {"Value": {"Ref": cluster_id}}
    outputs["LoadBalancerDNSName"] = {"Value": {"Fn::GetAtt": [lb_id, "DNSName"]}}
    return {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Description": "ECS Fargate cluster "+plan["cluster"]["name"]+" with path based routing on "+plan["load_balancer"]["name"],
        "Resources": resources,
        "Outputs": outputs
    }

def cfn_print(plan, options):
    template = build_template(plan)
    output_dir = os.path.join(options.get("output_directory"), plan["cluster"]["name"])
    make_dirs(output_dir)
    if options.get("cfn_format", "yaml") == "json":
        template_file = os.path.join(output_dir, "template.json")
        logger.info("Writing CloudFormation template in %s"%(template_file))
        with open(template_file, 'w') as tf:
            tf.write(json.dumps(template, indent=2))
            tf.write("\n")
    else:
        template_file = os.path.join(output_dir, "template.yaml")
        write_yaml(template_file, template)
    logger.log(100, "Please see %s for the CloudFormation template"%(template_file))
    return template_file
