"""Tests for apply and destroy against mocked AWS clients."""

import botocore.exceptions
import pytest
from unittest.mock import MagicMock

from conftest import client_error, fake_paginators
from fargatectl.spec2aws.aws_provisioner import apply_deployment, destroy_deployment


def empty_account_clients():
    """Clients for an account where nothing from the plan exists yet."""
    ecs = MagicMock()
    ecs.describe_clusters.return_value = {"clusters": [], "failures": [{"reason": "MISSING"}]}
    ecs.create_cluster.return_value = {"cluster": {"clusterArn": "arn:cluster/demo"}}
    ecs.register_task_definition.side_effect = lambda **kw: {
        "taskDefinition": {"taskDefinitionArn": "arn:task-definition/" + kw["family"] + ":1"}}
    ecs.describe_services.return_value = {"services": [], "failures": [{"reason": "MISSING"}]}
    ecs.create_service.side_effect = lambda **kw: {"service": {"serviceArn": "arn:service/" + kw["serviceName"]}}

    elbv2 = MagicMock()
    elbv2.describe_target_groups.side_effect = client_error("TargetGroupNotFound")
    elbv2.create_target_group.side_effect = lambda **kw: {"TargetGroups": [{"TargetGroupArn": "arn:tg/" + kw["Name"]}]}
    elbv2.describe_load_balancers.side_effect = client_error("LoadBalancerNotFound")
    elbv2.create_load_balancer.return_value = {"LoadBalancers": [{
        "LoadBalancerArn": "arn:lb/demo-alb", "DNSName": "demo-alb.elb.amazonaws.com"}]}
    elbv2.create_listener.return_value = {"Listeners": [{"ListenerArn": "arn:listener/http"}]}
    fake_paginators(elbv2, {
        "describe_listeners": [{"Listeners": []}],
        "describe_rules": [{"Rules": [{"IsDefault": True, "Priority": "default", "RuleArn": "arn:rule/default"}]}],
    })

    autoscaling = MagicMock()
    autoscaling.put_scaling_policy.return_value = {"PolicyARN": "arn:policy"}
    return {"ecs": ecs, "elbv2": elbv2, "application-autoscaling": autoscaling}


class TestApplyDeployment:
    """Tests for apply_deployment."""

    def test_creates_everything(self, plan):
        clients = empty_account_clients()
        result = apply_deployment(plan, {"input_file": ""}, clients)
        ecs = clients["ecs"]
        elbv2 = clients["elbv2"]

        assert result["dns_name"] == "demo-alb.elb.amazonaws.com"
        ecs.create_cluster.assert_called_once()
        assert elbv2.create_target_group.call_count == 3
        elbv2.create_load_balancer.assert_called_once()
        elbv2.get_waiter.assert_any_call("load_balancer_available")

        listener_kwargs = elbv2.create_listener.call_args.kwargs
        assert listener_kwargs["LoadBalancerArn"] == "arn:lb/demo-alb"
        assert listener_kwargs["DefaultActions"] == [{"Type": "forward", "TargetGroupArn": "arn:tg/web-80"}]

        priorities = [c.kwargs["Priority"] for c in elbv2.create_rule.call_args_list]
        assert priorities == [1, 2, 3, 4]
        elbv2.delete_rule.assert_not_called()

        assert ecs.register_task_definition.call_count == 3
        svc_kwargs = [c.kwargs for c in ecs.create_service.call_args_list]
        users = [kw for kw in svc_kwargs if kw["serviceName"] == "users"][0]
        assert users["taskDefinition"] == "arn:task-definition/demo-users:1"
        assert users["loadBalancers"][0]["targetGroupArn"] == "arn:tg/users-8080"

        autoscaling = clients["application-autoscaling"]
        autoscaling.register_scalable_target.assert_called_once()
        autoscaling.put_scaling_policy.assert_called_once()

    def test_updates_existing_resources(self, plan):
        clients = empty_account_clients()
        ecs = clients["ecs"]
        elbv2 = clients["elbv2"]
        ecs.describe_clusters.return_value = {"clusters": [{"status": "ACTIVE", "clusterArn": "arn:cluster/demo"}]}
        ecs.describe_services.return_value = {"services": [{"status": "ACTIVE", "serviceArn": "arn:service/x"}]}
        elbv2.describe_target_groups.side_effect = lambda Names: {"TargetGroups": [{
            "TargetGroupArn": "arn:tg/" + Names[0], "Port": 80, "VpcId": "vpc-123"}]}
        elbv2.describe_load_balancers.side_effect = None
        elbv2.describe_load_balancers.return_value = {"LoadBalancers": [{
            "LoadBalancerArn": "arn:lb/demo-alb", "DNSName": "demo-alb.elb.amazonaws.com"}]}
        fake_paginators(elbv2, {
            "describe_listeners": [{"Listeners": [{"ListenerArn": "arn:listener/http", "Port": 80}]}],
            "describe_rules": [{"Rules": [
                {"Priority": "1", "RuleArn": "arn:rule/1"},
                {"Priority": "7", "RuleArn": "arn:rule/7"},
            ]}],
        })

        apply_deployment(plan, {"input_file": ""}, clients)

        ecs.create_cluster.assert_not_called()
        ecs.put_cluster_capacity_providers.assert_called_once()
        elbv2.create_target_group.assert_not_called()
        assert elbv2.modify_target_group.call_count == 3
        elbv2.create_load_balancer.assert_not_called()
        elbv2.create_listener.assert_not_called()
        assert elbv2.modify_listener.call_args.kwargs["ListenerArn"] == "arn:listener/http"

        elbv2.delete_rule.assert_called_once_with(RuleArn="arn:rule/7")
        elbv2.modify_rule.assert_called_once()
        assert elbv2.modify_rule.call_args.kwargs["RuleArn"] == "arn:rule/1"
        assert [c.kwargs["Priority"] for c in elbv2.create_rule.call_args_list] == [2, 3, 4]

        ecs.create_service.assert_not_called()
        updates = {c.kwargs["service"]: c.kwargs for c in ecs.update_service.call_args_list}
        assert "desiredCount" not in updates["users"]
        assert updates["web"]["desiredCount"] == 1
        assert "serviceName" not in updates["web"]
        assert "launchType" not in updates["web"]

    def test_waits_for_services(self, plan):
        clients = empty_account_clients()
        apply_deployment(plan, {"input_file": "", "wait": True}, clients)

        clients["ecs"].get_waiter.assert_called_with("services_stable")
        clients["ecs"].get_waiter.return_value.wait.assert_called_with(
            cluster="demo", services=["web", "users", "orders"])

    def test_stops_on_client_error(self, plan):
        clients = empty_account_clients()
        clients["elbv2"].create_load_balancer.side_effect = client_error("AccessDenied", "CreateLoadBalancer")

        with pytest.raises(botocore.exceptions.ClientError):
            apply_deployment(plan, {"input_file": ""}, clients)
        clients["ecs"].create_service.assert_not_called()


class TestDestroyDeployment:
    """Tests for destroy_deployment."""

    def test_removes_in_reverse_order(self, plan):
        clients = empty_account_clients()
        ecs = clients["ecs"]
        elbv2 = clients["elbv2"]
        ecs.describe_services.return_value = {"services": [{"status": "ACTIVE"}]}
        elbv2.describe_load_balancers.side_effect = None
        elbv2.describe_load_balancers.return_value = {"LoadBalancers": [{"LoadBalancerArn": "arn:lb/demo-alb"}]}
        elbv2.describe_target_groups.side_effect = lambda Names: {"TargetGroups": [{"TargetGroupArn": "arn:tg/" + Names[0]}]}
        fake_paginators(ecs, {"list_task_definitions": [{"taskDefinitionArns": [
            "arn:aws:ecs:us-east-1:123456789012:task-definition/demo-web:1",
            "arn:aws:ecs:us-east-1:123456789012:task-definition/demo-web-canary:1",
        ]}]})

        deleted = destroy_deployment(plan, {}, clients)

        assert deleted == ["web", "users", "orders"]
        assert ecs.delete_service.call_count == 3
        ecs.get_waiter.assert_any_call("services_inactive")
        elbv2.delete_load_balancer.assert_called_once_with(LoadBalancerArn="arn:lb/demo-alb")
        assert elbv2.delete_target_group.call_count == 3
        deregistered = [c.kwargs["taskDefinition"] for c in ecs.deregister_task_definition.call_args_list]
        assert all(arn.endswith("demo-web:1") for arn in deregistered)
        ecs.delete_cluster.assert_called_once_with(cluster="demo")

        autoscaling = clients["application-autoscaling"]
        autoscaling.delete_scaling_policy.assert_called_once()
        autoscaling.deregister_scalable_target.assert_called_once()

    def test_skips_missing_resources(self, plan):
        clients = empty_account_clients()
        ecs = clients["ecs"]
        autoscaling = clients["application-autoscaling"]
        autoscaling.deregister_scalable_target.side_effect = client_error("ObjectNotFoundException")
        autoscaling.delete_scaling_policy.side_effect = client_error("ObjectNotFoundException")
        ecs.delete_cluster.side_effect = client_error("ClusterNotFoundException")
        fake_paginators(ecs, {"list_task_definitions": [{"taskDefinitionArns": []}]})

        assert destroy_deployment(plan, {}, clients) == []
        ecs.delete_service.assert_not_called()
        clients["elbv2"].delete_load_balancer.assert_not_called()
        clients["elbv2"].delete_target_group.assert_not_called()

    def test_other_errors_propagate(self, plan):
        clients = empty_account_clients()
        clients["ecs"].delete_cluster.side_effect = client_error("ClusterContainsServicesException")
        fake_paginators(clients["ecs"], {"list_task_definitions": [{"taskDefinitionArns": []}]})

        with pytest.raises(botocore.exceptions.ClientError):
            destroy_deployment(plan, {}, clients)
