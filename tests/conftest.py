"""Shared fixtures for fargatectl tests."""

import copy

import botocore.exceptions
import pytest
from unittest.mock import MagicMock

from fargatectl.spec2aws.spec_parser import parse_deployment


DEPLOYMENT = {
    "cluster": {"name": "demo", "region": "us-east-1"},
    "network": {
        "vpc_id": "vpc-123",
        "subnets": ["subnet-a", "subnet-b"],
        "security_groups": ["sg-tasks"],
        "assign_public_ip": "ENABLED",
    },
    "load_balancer": {
        "name": "demo-alb",
        "security_groups": ["sg-alb"],
        "default_service": "web",
    },
    "services": [
        {
            "name": "web",
            "image": "nginx:1.25",
            "container_port": 80,
            "routes": ["/"],
        },
        {
            "name": "users",
            "image": "example/users:1.0",
            "container_port": 8080,
            "cpu": "0.5 vCPU",
            "memory": "1 GB",
            "desired_count": 2,
            "execution_role_arn": "arn:aws:iam::123456789012:role/ecsTaskExecutionRole",
            "log_group": "/ecs/users",
            "environment": {"LOG_LEVEL": "info"},
            "routes": ["/users", {"path": "/users/health", "path_type": "Exact"}],
            "health_check": {"path": "/users/health"},
            "autoscaling": {"min_capacity": 1, "max_capacity": 4, "target_cpu": 60},
        },
        {
            "name": "orders",
            "image": "example/orders:1.0",
            "container_port": 9090,
            "routes": [{"path": "/orders", "host": "api.example.com"}],
        },
    ],
    "tags": {"team": "platform"},
}


@pytest.fixture
def deployment():
    """A deployment file with three services behind one HTTP listener."""
    return copy.deepcopy(DEPLOYMENT)


@pytest.fixture
def plan(deployment):
    """The parsed plan of the sample deployment."""
    return parse_deployment(deployment)


def client_error(code, operation="Operation"):
    """Build a botocore ClientError with the given error code."""
    return botocore.exceptions.ClientError({"Error": {"Code": code, "Message": code}}, operation)


def fake_paginators(client, pages_by_operation):
    """Make client.get_paginator(name).paginate(...) return the given pages."""
    paginators = {}
    for name, pages in pages_by_operation.items():
        paginator = MagicMock()
        paginator.paginate.return_value = pages
        paginators[name] = paginator
    client.get_paginator.side_effect = lambda name: paginators[name]
    return paginators
