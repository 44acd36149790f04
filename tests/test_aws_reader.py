"""Tests for reading Fargate services, target groups and rules from AWS."""

from unittest.mock import MagicMock

import pytest

from conftest import client_error, fake_paginators
from fargatectl.aws2spec.aws_reader import (
    ecs_cluster_extract,
    ecs_get_service_details,
    get_listeners_and_rules,
    get_scaling_details,
    get_tg_details,
    pick_ecs_cluster,
)


def elbv2_client():
    elbv2 = MagicMock()
    elbv2.describe_target_groups.return_value = {"TargetGroups": [{
        "TargetGroupArn": "arn:tg/users", "TargetGroupName": "users-8080",
        "LoadBalancerArns": ["arn:lb/demo-alb"], "VpcId": "vpc-123"}]}
    elbv2.describe_load_balancers.return_value = {"LoadBalancers": [{
        "LoadBalancerArn": "arn:lb/demo-alb", "LoadBalancerName": "demo-alb"}]}
    fake_paginators(elbv2, {
        "describe_listeners": [{"Listeners": [{
            "ListenerArn": "arn:listener/http", "Port": 80, "Protocol": "HTTP",
            "DefaultActions": [{"Type": "forward", "TargetGroupArn": "arn:tg/web"}]}]}],
        "describe_rules": [{"Rules": [
            {"Priority": "1", "Actions": [{"Type": "forward", "TargetGroupArn": "arn:tg/users"}]},
            {"Priority": "2", "Actions": [{"Type": "forward", "TargetGroupArn": "arn:tg/web"}]},
            {"Priority": "3", "Actions": [{"Type": "fixed-response"}]},
            {"Priority": "default", "IsDefault": True,
             "Actions": [{"Type": "forward", "TargetGroupArn": "arn:tg/users"}]},
        ]}],
    })
    return elbv2


def test_listener_rules_for_target_group():
    listeners = get_listeners_and_rules(elbv2_client(), "arn:lb/demo-alb", "arn:tg/users")

    assert len(listeners) == 1
    assert [r["Priority"] for r in listeners[0]["rules"]] == ["1"]
    assert "is_default_target" not in listeners[0]


def test_default_target_marked():
    listeners = get_listeners_and_rules(elbv2_client(), "arn:lb/demo-alb", "arn:tg/web")
    assert listeners[0]["is_default_target"] is True


class TestGetTgDetails:
    """Tests for get_tg_details."""

    def test_details(self):
        tg = get_tg_details(elbv2_client(), "arn:tg/users")
        assert tg["load_balancer"]["LoadBalancerName"] == "demo-alb"
        assert len(tg["listeners"]) == 1

    def test_describe_error(self):
        elbv2 = elbv2_client()
        elbv2.describe_target_groups.side_effect = client_error("TargetGroupNotFound")
        assert get_tg_details(elbv2, "arn:tg/users") == {}

    def test_no_load_balancer(self):
        elbv2 = elbv2_client()
        elbv2.describe_target_groups.return_value = {"TargetGroups": [{"TargetGroupName": "users-8080"}]}
        assert get_tg_details(elbv2, "arn:tg/users") == {}


def test_service_details_batched():
    ecs = MagicMock()
    ecs.describe_services.side_effect = lambda cluster, services, include: {
        "services": [{"serviceName": s} for s in services]}
    services = ["svc-%d" % i for i in range(23)]

    details = ecs_get_service_details(ecs, "demo", services)

    assert len(details) == 23
    assert [len(c.kwargs["services"]) for c in ecs.describe_services.call_args_list] == [10, 10, 3]


def test_scaling_details():
    autoscaling = MagicMock()
    autoscaling.describe_scalable_targets.return_value = {"ScalableTargets": [{"MinCapacity": 1, "MaxCapacity": 3}]}
    autoscaling.describe_scaling_policies.return_value = {"ScalingPolicies": [{"PolicyName": "p"}]}

    details = get_scaling_details(autoscaling, "demo", "users")

    assert details["target"]["MaxCapacity"] == 3
    autoscaling.describe_scalable_targets.assert_called_once_with(
        ServiceNamespace="ecs", ResourceIds=["service/demo/users"], ScalableDimension="ecs:service:DesiredCount")


def test_scaling_details_none():
    autoscaling = MagicMock()
    autoscaling.describe_scalable_targets.return_value = {"ScalableTargets": []}
    assert get_scaling_details(autoscaling, "demo", "web") == {}
    autoscaling.describe_scaling_policies.assert_not_called()


def test_ecs_cluster_extract():
    ecs = MagicMock()
    fake_paginators(ecs, {"list_services": [{"serviceArns": ["arn:service/demo/users", "arn:service/demo/batch"]}]})
    ecs.describe_services.return_value = {"services": [
        {"serviceName": "users", "taskDefinition": "arn:task-definition/demo-users:3",
         "loadBalancers": [{"targetGroupArn": "arn:tg/users", "containerName": "users", "containerPort": 8080}]},
        {"serviceName": "batch"},
    ]}
    ecs.describe_task_definition.return_value = {"taskDefinition": {"family": "demo-users"}}
    autoscaling = MagicMock()
    autoscaling.describe_scalable_targets.return_value = {"ScalableTargets": []}
    clients = {"ecs": ecs, "elbv2": elbv2_client(), "application-autoscaling": autoscaling}

    cluster_name, records = ecs_cluster_extract({"cluster_name": "demo"}, clients)

    assert cluster_name == "demo"
    assert len(records) == 1
    users = records[0]
    assert users["task_definition"] == {"family": "demo-users"}
    assert users["target_groups"][0]["container_port"] == 8080
    assert users["scaling"] == {}


def test_pick_cluster_exits_without_clusters():
    ecs = MagicMock()
    fake_paginators(ecs, {"list_clusters": [{"clusterArns": []}]})
    with pytest.raises(SystemExit):
        pick_ecs_cluster(ecs)
