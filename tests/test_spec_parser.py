"""Tests for deployment file parsing."""

import pytest

from fargatectl.spec2aws import SpecError
from fargatectl.spec2aws.spec_parser import parse_deployment, read_deployment


class TestParseDeployment:
    """Tests for a valid deployment file."""

    def test_cluster_and_network(self, plan):
        assert plan["cluster"] == {
            "name": "demo",
            "region": "us-east-1",
            "capacity_providers": ["FARGATE"],
            "container_insights": False,
        }
        assert plan["network"]["assign_public_ip"] == "ENABLED"

    def test_default_listener(self, plan):
        assert list(plan["listeners"].keys()) == ["demo-alb-HTTP-80"]
        listener = plan["listeners"]["demo-alb-HTTP-80"]
        assert listener["default_action"] == {"type": "forward", "target_group_key": "demo-alb-web-80"}

    def test_load_balancer_uses_network_subnets(self, plan):
        assert plan["load_balancer"]["subnets"] == ["subnet-a", "subnet-b"]

    def test_task_size_rounded_to_fargate(self, plan):
        users = plan["services"][1]
        assert (users["cpu"], users["memory"]) == (512, 1024)
        web = plan["services"][0]
        assert (web["cpu"], web["memory"]) == (256, 512)

    def test_target_groups(self, plan):
        names = [tg["name"] for tg in plan["target_groups"].values()]
        assert names == ["web-80", "users-8080", "orders-9090"]
        users_tg = plan["target_groups"]["demo-alb-users-8080"]
        assert users_tg["target_type"] == "ip"
        assert users_tg["health_check"]["path"] == "/users/health"
        assert users_tg["health_check"]["interval"] == 30

    def test_rules_ordered_by_specificity(self, plan):
        rules = list(plan["listener_rules"].values())
        assert [(r["priority"], r["service"]) for r in rules] == [
            (1, "orders"),
            (2, "users"),
            (3, "users"),
            (4, "web"),
        ]
        assert rules[1]["conditions"] == [{"field": "path-pattern", "values": ["/users/health"]}]

    def test_autoscaling_defaults(self, plan):
        assert plan["services"][1]["autoscaling"] == {
            "min_capacity": 1,
            "max_capacity": 4,
            "target_cpu": 60,
            "target_memory": None,
            "scale_in_cooldown": 60,
            "scale_out_cooldown": 60,
        }
        assert plan["services"][0]["autoscaling"] == {}

    def test_family_and_environment(self, plan):
        users = plan["services"][1]
        assert users["family"] == "demo-users"
        assert users["environment"] == [{"name": "LOG_LEVEL", "value": "info"}]

    def test_long_target_group_names(self, deployment):
        deployment["services"] = [
            {"name": "a" * 40, "image": "x", "container_port": 80, "routes": ["/a"]},
            {"name": "a" * 40 + "-b", "image": "x", "container_port": 80, "routes": ["/b"]},
        ]
        deployment["load_balancer"].pop("default_service")
        plan = parse_deployment(deployment)
        names = [tg["name"] for tg in plan["target_groups"].values()]

        assert all(len(n) <= 32 for n in names)
        assert len(set(names)) == 2

    def test_default_service_without_routes(self, deployment):
        deployment["services"][0].pop("routes")
        plan = parse_deployment(deployment)

        assert [r["service"] for r in plan["listener_rules"].values()] == ["orders", "users", "users"]
        assert plan["listeners"]["demo-alb-HTTP-80"]["default_action"]["target_group_key"] == "demo-alb-web-80"

    def test_default_service_name_cleaned_like_services(self, deployment):
        deployment["services"][0]["name"] = "my_svc"
        deployment["load_balancer"]["default_service"] = "my_svc"
        plan = parse_deployment(deployment)

        assert plan["load_balancer"]["default_service"] == "my-svc"
        assert plan["listeners"]["demo-alb-HTTP-80"]["default_action"] == {
            "type": "forward", "target_group_key": "demo-alb-my-svc-80"}

    def test_https_with_redirect(self, deployment):
        deployment["load_balancer"]["redirect_http"] = True
        deployment["load_balancer"]["listeners"] = [
            {"protocol": "HTTP", "port": 80},
            {"protocol": "HTTPS", "port": 443, "certificate_arn": "arn:aws:acm:us-east-1:123456789012:certificate/abc"},
        ]
        plan = parse_deployment(deployment)

        assert plan["listeners"]["demo-alb-HTTP-80"]["default_action"]["type"] == "redirect"
        assert plan["listeners"]["demo-alb-HTTPS-443"]["ssl_policy"].startswith("ELBSecurityPolicy")
        assert {r["listener_name"] for r in plan["listener_rules"].values()} == {"demo-alb-HTTPS-443"}


class TestInvalidDeployment:
    """Each invalid deployment file raises a SpecError naming the field."""

    def test_empty(self):
        with pytest.raises(SpecError, match="empty"):
            parse_deployment({})

    def test_missing_cluster_name(self, deployment):
        deployment["cluster"] = {"region": "us-east-1"}
        with pytest.raises(SpecError, match="cluster.name"):
            parse_deployment(deployment)

    def test_single_subnet(self, deployment):
        deployment["network"]["subnets"] = ["subnet-a"]
        with pytest.raises(SpecError, match="two subnets"):
            parse_deployment(deployment)

    def test_https_without_certificate(self, deployment):
        deployment["load_balancer"]["listeners"] = [{"protocol": "HTTPS", "port": 443}]
        with pytest.raises(SpecError, match="certificate_arn"):
            parse_deployment(deployment)

    def test_duplicate_service(self, deployment):
        deployment["services"].append(dict(deployment["services"][0]))
        with pytest.raises(SpecError, match="defined twice"):
            parse_deployment(deployment)

    def test_unknown_default_service(self, deployment):
        deployment["load_balancer"]["default_service"] = "nope"
        with pytest.raises(SpecError, match="default_service"):
            parse_deployment(deployment)

    def test_task_size_too_large(self, deployment):
        deployment["services"][0]["cpu"] = 16384
        deployment["services"][0]["memory"] = "200 GB"
        with pytest.raises(SpecError, match="no Fargate task size"):
            parse_deployment(deployment)

    def test_autoscaling_without_target(self, deployment):
        deployment["services"][1]["autoscaling"] = {"min_capacity": 1, "max_capacity": 2}
        with pytest.raises(SpecError, match="target_cpu"):
            parse_deployment(deployment)

    def test_autoscaling_min_above_max(self, deployment):
        deployment["services"][1]["autoscaling"] = {"min_capacity": 3, "max_capacity": 2, "target_cpu": 50}
        with pytest.raises(SpecError, match="min_capacity"):
            parse_deployment(deployment)

    def test_secrets_need_execution_role(self, deployment):
        deployment["services"][0]["secrets"] = {"DB_PASSWORD": "/demo/db/password"}
        with pytest.raises(SpecError, match="execution_role_arn"):
            parse_deployment(deployment)

    def test_health_check_timeout(self, deployment):
        deployment["services"][0]["health_check"] = {"interval": 5, "timeout": 5}
        with pytest.raises(SpecError, match="timeout"):
            parse_deployment(deployment)

    def test_two_protocols_on_one_port(self, deployment):
        deployment["load_balancer"]["listeners"] = [
            {"protocol": "HTTP", "port": 80},
            {"protocol": "HTTPS", "port": 80, "certificate_arn": "arn:aws:acm:us-east-1:123456789012:certificate/abc"},
        ]
        with pytest.raises(SpecError, match="port 80 is defined twice"):
            parse_deployment(deployment)

    def test_listener_not_a_mapping(self, deployment):
        deployment["load_balancer"]["listeners"] = ["HTTP:80"]
        with pytest.raises(SpecError, match="mapping"):
            parse_deployment(deployment)

    def test_service_without_routes(self, deployment):
        deployment["services"].append({"name": "worker", "image": "example/worker:1.0", "container_port": 7000})
        with pytest.raises(SpecError, match="services.worker: set routes"):
            parse_deployment(deployment)

    def test_health_check_number_as_string(self, deployment):
        deployment["services"][0]["health_check"] = {"interval": "30"}
        with pytest.raises(SpecError, match="health_check.interval must be a number"):
            parse_deployment(deployment)

    def test_autoscaling_number_as_string(self, deployment):
        deployment["services"][1]["autoscaling"]["max_capacity"] = "4"
        with pytest.raises(SpecError, match="autoscaling.max_capacity must be a number"):
            parse_deployment(deployment)

    def test_conflicting_routes(self, deployment):
        deployment["services"][2]["routes"] = ["/users"]
        with pytest.raises(SpecError, match="users and orders"):
            parse_deployment(deployment)


def test_read_deployment(tmp_path):
    source = tmp_path / "deployment.yaml"
    source.write_text(
        "cluster: {name: demo}\n"
        "network: {vpc_id: vpc-1, subnets: [subnet-a, subnet-b]}\n"
        "load_balancer: {name: demo-alb}\n"
        "services:\n"
        "  - {name: web, image: nginx, container_port: 80, routes: [/]}\n"
    )
    plan = read_deployment(str(source))

    assert plan["cluster"]["region"] == ""
    assert len(plan["listener_rules"]) == 1


def test_read_deployment_missing_file(tmp_path):
    with pytest.raises(SpecError, match="no deployment"):
        read_deployment(str(tmp_path / "missing.yaml"))
