# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
import sys
import botocore
import botocore.exceptions
from pick import pick
from ..utils import get_client
import logging

logger = logging.getLogger(__name__)

# describe_services takes at most 10 services per call
DESCRIBE_SERVICES_BATCH = 10

def pick_ecs_cluster(client):
    cluster_list = []
    paginator = client.get_paginator('list_clusters')
    response_iterator = paginator.paginate(
        PaginationConfig={
            'MaxItems': 5000,
            'PageSize': 100,
        }
    )
    for i in response_iterator:
        cluster_list = cluster_list+i["clusterArns"]
    if len(cluster_list)<=0:
        logger.critical("No ECS clusters found. Check AWS_REGION setting or pass --region_name")
        sys.exit(1)
    option, _ = pick(cluster_list, title="Pick the ECS cluster to export",
                     default_index=0)
    logger.info("Selected ECS cluster is %s"%(option))
    return(option.split("cluster/")[1])

def get_listeners_and_rules(elbv2_client, lb_arn, target_group_arn):
    return_listeners = []
    listeners = []
    paginator = elbv2_client.get_paginator("describe_listeners")
    response_iterator = paginator.paginate(LoadBalancerArn=lb_arn)
    for i in response_iterator:
        listeners += i["Listeners"]
    for listener in listeners:
        listener["rules"]=[]
        paginator = elbv2_client.get_paginator("describe_rules")
        response_iterator = paginator.paginate(ListenerArn=listener.get("ListenerArn"))
        for i in response_iterator:
            for r in i["Rules"]:
                # the default rule mirrors the listener default action
                if r.get("IsDefault"): continue
                for action in r.get("Actions",[]):
                    if action.get("Type") != "forward":
                        continue
                    if action.get("TargetGroupArn") != target_group_arn: continue
                    listener["rules"].append(r)
        for action in listener.get("DefaultActions", []):
            if action.get("Type") == "forward" and action.get("TargetGroupArn") == target_group_arn:
                listener["is_default_target"] = True
        return_listeners.append(listener)
    return return_listeners

def get_tg_details(elbv2_client, target_group_arn):
    try:
        response = elbv2_client.describe_target_groups(TargetGroupArns=[target_group_arn])
    except botocore.exceptions.ClientError as error:
        logger.error("Unable to describe target group %s %s"%(target_group_arn, error))
        return {}
    tgs = response.get("TargetGroups")
    if tgs is None or len(tgs)<=0:
        logger.error("%s target group not found"%(target_group_arn))
        return {}
    tg = tgs[0]
    lb_arns = tg.get("LoadBalancerArns")
    if lb_arns is None or len(lb_arns) <= 0:
        logger.error("%s target group has no associated load balancer"%(tg.get("TargetGroupName","")))
        return {}
    describe_lb_response = elbv2_client.describe_load_balancers(LoadBalancerArns=lb_arns)
    lb_description_list = describe_lb_response.get("LoadBalancers")
    if lb_description_list is None or len(lb_description_list)<=0:
        logger.error("Load balancer associated with %s target group couldn't be found"%(tg.get("TargetGroupName","")))
        return {}
    # an ip target group is attached to exactly one application load balancer
    tg["load_balancer"] = lb_description_list[0]
    tg["listeners"]= get_listeners_and_rules(elbv2_client, tg["load_balancer"]["LoadBalancerArn"], target_group_arn)
    return tg

def ecs_get_service_details(client, cluster_name, services):
    svc_details = []
    for i in range(0, len(services), DESCRIBE_SERVICES_BATCH):
        response = client.describe_services(
            cluster=cluster_name,
            services=services[i:i+DESCRIBE_SERVICES_BATCH],
            include=['TAGS']
        )
        svc_details += response.get("services",[])
    return svc_details

def ecs_get_task_definition(client, task_definition):
    response = client.describe_task_definition(
        taskDefinition= task_definition,
        include=['TAGS']
    )
    return(response.get("taskDefinition", None))

def ecs_cluster_extract(options, clients=None):
    region_name = options.get("region_name","")
    if clients is None:
        clients = {"ecs": get_client("ecs", region_name),
                   "elbv2": get_client("elbv2", region_name),
                   "application-autoscaling": get_client("application-autoscaling", region_name)}
    ecs_client = clients["ecs"]
    elbv2_client = clients["elbv2"]

    cluster_name = options.get("cluster_name", "")
    if len(cluster_name)<=0:
        cluster_name = pick_ecs_cluster(ecs_client)

    service_arns = []
    paginator = ecs_client.get_paginator('list_services')
    response_iterator = paginator.paginate(
        cluster = cluster_name,
        launchType = "FARGATE",
        schedulingStrategy = "REPLICA",
        PaginationConfig={
            'MaxItems': 5000,
            'PageSize': 10,
        }
    )
    for i in response_iterator:
        service_arns += i['serviceArns']
    logger.info("%s cluster has %d Fargate services"%(cluster_name, len(service_arns)))

    records = []
    for svc_def in ecs_get_service_details(ecs_client, cluster_name, service_arns):
        svc_name = svc_def.get("serviceName","")
        if len(svc_name) <=0:
            logger.error("Skipping ECS service without name")
            continue
        task_def_arn = svc_def.get("taskDefinition")
        if task_def_arn is None:
            logger.error("Skipping service %s that has no task definition"%(svc_name))
            continue
        record = {"service": svc_def, "task_definition": ecs_get_task_definition(ecs_client, task_def_arn), "target_groups": []}
        for lb in svc_def.get("loadBalancers", []):
            tg_arn = lb.get("targetGroupArn")
            if tg_arn is None or len(tg_arn) <=0: continue
            tg_details = get_tg_details(elbv2_client, tg_arn)
            if len(tg_details) > 0:
                tg_details["container_name"] = lb.get("containerName")
                tg_details["container_port"] = lb.get("containerPort")
                record["target_groups"].append(tg_details)
        record["scaling"] = get_scaling_details(clients["application-autoscaling"], cluster_name, svc_name)
        records.append(record)
    return cluster_name, records

def get_scaling_details(autoscaling_client, cluster_name, svc_name):
    resource_id = "service/"+cluster_name+"/"+svc_name
    try:
        targets = autoscaling_client.describe_scalable_targets(
            ServiceNamespace="ecs", ResourceIds=[resource_id],
            ScalableDimension="ecs:service:DesiredCount").get("ScalableTargets", [])
        if len(targets) == 0:
            return {}
        policies = autoscaling_client.describe_scaling_policies(
            ServiceNamespace="ecs", ResourceId=resource_id,
            ScalableDimension="ecs:service:DesiredCount").get("ScalingPolicies", [])
    except botocore.exceptions.ClientError as error:
        logger.error("Unable to describe autoscaling of %s %s"%(svc_name, error))
        return {}
    return {"target": targets[0], "policies": policies}
