# // Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# // SPDX-License-Identifier: Apache-2.0
CLUSTER_DEF = {
    "clusterName": "",
    "capacityProviders": [],
    "defaultCapacityProviderStrategy": [],
    "settings": [],
    "tags": []
}

TASK_DEF = {
    "containerDefinitions": [
    ],
    "family": "",
    "networkMode": "awsvpc",
    "requiresCompatibilities": [
        "FARGATE"
    ],
    "cpu": "",
    "memory": "",
    "tags":[]
}

CONTAINER_DEF = {
    "name": "",
    "image": "",
    "essential": True,
    "portMappings": [
        {
            "containerPort": "",
            "protocol": "tcp"
        }
    ],
    "environment": [],
    "secrets": []
}

LOG_CONFIGURATION = {
    "logDriver": "awslogs",
    "options": {
        "awslogs-group": "",
        "awslogs-region": "",
        "awslogs-stream-prefix": "ecs",
        "awslogs-create-group": "true"
    }
}

SERVICE_DEF = {
    "cluster": "",
    "serviceName": "",
    "desiredCount": 1,
    "tags":[],
    "taskDefinition": "",
    "deploymentConfiguration": {
        "maximumPercent": 200,
        "minimumHealthyPercent": 100,
        "deploymentCircuitBreaker": {
            "enable": True,
            "rollback": True
        }
    },
    "networkConfiguration": {
        "awsvpcConfiguration": {
            "subnets": [],
            "securityGroups": [],
            "assignPublicIp": "DISABLED"
        }
    },
    "loadBalancers": [],
    "healthCheckGracePeriodSeconds": 60,
    "schedulingStrategy": "REPLICA",
    "enableECSManagedTags": True,
    "propagateTags": "SERVICE",
    "enableExecuteCommand": False
}

TARGET_GROUP_DEF = {
    "Name": "",
    "Protocol": "HTTP",
    "Port": 80,
    "VpcId": "",
    "TargetType": "ip",
    "HealthCheckEnabled": True,
    "HealthCheckProtocol": "HTTP",
    "HealthCheckPath": "/",
    "HealthCheckIntervalSeconds": 30,
    "HealthCheckTimeoutSeconds": 5,
    "HealthyThresholdCount": 5,
    "UnhealthyThresholdCount": 2,
    "Matcher": {"HttpCode": "200"},
    "Tags": []
}

LOAD_BALANCER_DEF = {
    "Name": "",
    "Subnets": [],
    "SecurityGroups": [],
    "Scheme": "internet-facing",
    "Type": "application",
    "IpAddressType": "ipv4",
    "Tags": []
}

LISTENER_DEF = {
    "LoadBalancerArn": "",
    "Protocol": "HTTP",
    "Port": 80,
    "DefaultActions": []
}

RULE_DEF = {
    "ListenerArn": "",
    "Priority": 1,
    "Conditions": [],
    "Actions": []
}

SCALABLE_TARGET_DEF = {
    "ServiceNamespace": "ecs",
    "ResourceId": "",
    "ScalableDimension": "ecs:service:DesiredCount",
    "MinCapacity": 1,
    "MaxCapacity": 1
}

SCALING_POLICY_DEF = {
    "PolicyName": "",
    "ServiceNamespace": "ecs",
    "ResourceId": "",
    "ScalableDimension": "ecs:service:DesiredCount",
    "PolicyType": "TargetTrackingScaling",
    "TargetTrackingScalingPolicyConfiguration": {
        "TargetValue": 50.0,
        "PredefinedMetricSpecification": {
            "PredefinedMetricType": ""
        },
        "ScaleInCooldown": 60,
        "ScaleOutCooldown": 60
    }
}

SCALING_METRICS = {
    "target_cpu": ("cpu", "ECSServiceAverageCPUUtilization"),
    "target_memory": ("memory", "ECSServiceAverageMemoryUtilization")
}
