import os
import yaml
import pytest
from stackplan.errors import (
    CyclicDependencyError, MissingSecretError, PortConflictError, SchemaError,
    UnreachableDependencyError,
)
from stackplan.MANAGERS.plan_orchestrator import PlanOrchestrator
from stackplan.MODELS.settings import PlanSettings

BASE = {
    'include': ['compose.monitoring.yml'],
    'services': {
        'frontend': {
            'build': {'context': './frontend'},
            'env_file': ['frontend/.env'],
            'depends_on': ['backend'],
            'ports': ['5173:5173'],
            'networks': ['frontend-network'],
        },
        'backend': {
            'build': {'context': './backend'},
            'env_file': ['backend/.env'],
            'networks': ['frontend-network', 'backend-network'],
            'depends_on': ['db'],
            'secrets': ['postgres_password'],
            'ports': ['8000:8000'],
        },
        'db': {
            'image': 'postgres:13',
            'environment': {
                'POSTGRES_PASSWORD_FILE': '/run/secrets/postgres_password',
                'POSTGRES_USER': 'app',
                'POSTGRES_DB': 'app',
            },
            'secrets': ['postgres_password'],
            'networks': ['backend-network'],
            'volumes': ['postgres_data:/var/lib/postgresql/data'],
        },
        'adminer': {
            'image': 'adminer',
            'ports': ['8080:8080'],
            'restart': 'always',
            'environment': {'ADMINER_DEFAULT_SERVER': 'db'},
            'networks': ['backend-network'],
        },
        'nginx': {
            'image': 'jc21/nginx-proxy-manager:2.10.4',
            'ports': ['80:80', '443:443', '8090:81'],
            'environment': {'DB_SQLITE_FILE': '/data/database.sqlite'},
            'volumes': ['data:/data', 'letsencrypt:/etc/letsencrypt'],
            'restart': 'always',
            'depends_on': ['frontend', 'backend', 'adminer', 'prometheus', 'grafana'],
            'networks': ['frontend-network', 'backend-network'],
        },
    },
    'networks': {'frontend-network': None, 'backend-network': None},
    'volumes': {'postgres_data': None, 'data': None, 'letsencrypt': None},
    'secrets': {'postgres_password': {'file': './POSTGRES_PASSWORD.txt'}},
}

MONITORING = {
    'services': {
        'prometheus': {
            'image': 'prom/prometheus',
            'ports': ['9090:9090'],
            'networks': ['backend-network'],
        },
        'grafana': {
            'image': 'grafana/grafana',
            'ports': ['3000:3000'],
            'depends_on': ['prometheus'],
            'networks': ['backend-network'],
        },
    },
}


@pytest.fixture
def project(tmp_path):
    with open(tmp_path / "docker-compose.yml", 'w') as f:
        yaml.dump(BASE, f)
    with open(tmp_path / "compose.monitoring.yml", 'w') as f:
        yaml.dump(MONITORING, f)
    secret = tmp_path / "POSTGRES_PASSWORD.txt"
    secret.write_text("s3cret\n")
    os.chmod(secret, 0o600)
    for app in ("frontend", "backend"):
        (tmp_path / app).mkdir()
        (tmp_path / app / ".env").write_text("MODE=production\n")
    return tmp_path


def _write(path, data):
    with open(path, 'w') as f:
        yaml.dump(data, f)
    return str(path)


def _build(*files, **kwargs):
    return PlanOrchestrator(PlanSettings(files=[str(f) for f in files], environ={}, **kwargs)).build()


def test_full_topology(project):
    plan = _build(project / "docker-compose.yml")
    assert plan.startup_order == ["adminer", "db", "backend", "frontend", "prometheus", "grafana", "nginx"]
    assert plan.resolved_secrets == {"postgres_password": str(project / "POSTGRES_PASSWORD.txt")}

    doc = yaml.safe_load(plan.document)
    assert sorted(doc["services"]) == ["adminer", "backend", "db", "frontend", "grafana", "nginx", "prometheus"]
    assert doc["services"]["nginx"]["depends_on"] == ["adminer", "backend", "frontend", "grafana", "prometheus"]


def test_plan_is_stable_across_runs(project):
    first = _build(project / "docker-compose.yml")
    second = _build(project / "docker-compose.yml")
    assert first.document == second.document
    assert first.digest == second.digest


def test_overlay_scalar_wins(project):
    overlay = _write(project / "compose.prod.yml", {
        'services': {'db': {'image': 'postgres:16', 'environment': {'POSTGRES_DB': 'prod'}}},
    })
    doc = yaml.safe_load(_build(project / "docker-compose.yml", overlay).document)
    assert doc["services"]["db"]["image"] == "postgres:16"
    assert doc["services"]["db"]["environment"]["POSTGRES_DB"] == "prod"
    assert doc["services"]["db"]["environment"]["POSTGRES_USER"] == "app"


def test_missing_secret(project):
    os.remove(project / "POSTGRES_PASSWORD.txt")
    with pytest.raises(MissingSecretError) as excinfo:
        _build(project / "docker-compose.yml")
    assert (excinfo.value.secret, excinfo.value.path) == ("postgres_password", "./POSTGRES_PASSWORD.txt")


def test_skip_secret_check(project):
    os.remove(project / "POSTGRES_PASSWORD.txt")
    plan = _build(project / "docker-compose.yml", check_secrets=False)
    assert plan.resolved_secrets == {}


def test_missing_env_file(project):
    os.remove(project / "frontend" / ".env")
    with pytest.raises(SchemaError) as excinfo:
        _build(project / "docker-compose.yml")
    assert excinfo.value.service == "frontend"
    _build(project / "docker-compose.yml", check_env_files=False)


def test_unreachable_dependency_from_overlay(tmp_path):
    base = _write(tmp_path / "base.yml", {
        'services': {
            'backend': {'build': './backend', 'depends_on': ['db'], 'networks': ['backend-network']},
            'db': {'image': 'postgres:13', 'networks': ['backend-network']},
        },
        'networks': {'backend-network': None},
    })
    overlay = _write(tmp_path / "proxy.yml", {
        'services': {
            'nginx': {'image': 'jc21/nginx-proxy-manager:2.10.4', 'depends_on': ['backend'],
                      'networks': ['frontend-network']},
        },
        'networks': {'frontend-network': None},
    })
    with pytest.raises(UnreachableDependencyError) as excinfo:
        _build(base, overlay)
    assert (excinfo.value.service, excinfo.value.dependency) == ("nginx", "backend")


def test_port_conflict_from_overlay(project):
    overlay = _write(project / "compose.debug.yml", {
        'services': {'debugger': {'image': 'debug', 'ports': ['8080:9229']}},
    })
    with pytest.raises(PortConflictError) as excinfo:
        _build(project / "docker-compose.yml", overlay)
    assert excinfo.value.services == ["adminer", "debugger"]


def test_cycle_from_overlay(project):
    overlay = _write(project / "compose.cycle.yml", {
        'services': {'db': {'depends_on': ['backend']}},
    })
    with pytest.raises(CyclicDependencyError) as excinfo:
        _build(project / "docker-compose.yml", overlay)
    assert excinfo.value.cycle == ["backend", "db", "backend"]


def test_secret_failure_stops_before_graph_checks(project):
    os.remove(project / "POSTGRES_PASSWORD.txt")
    overlay = _write(project / "compose.cycle.yml", {
        'services': {'db': {'depends_on': ['backend']}},
    })
    with pytest.raises(MissingSecretError):
        _build(project / "docker-compose.yml", overlay)


def test_interpolation_from_dotenv(project):
    (project / ".env").write_text("PG_TAG=15\n")
    overlay = _write(project / "compose.prod.yml", {'services': {'db': {'image': 'postgres:${PG_TAG}'}}})
    doc = yaml.safe_load(_build(project / "docker-compose.yml", overlay).document)
    assert doc["services"]["db"]["image"] == "postgres:15"


def test_included_document_env_file_in_subdirectory(tmp_path):
    (tmp_path / "monitoring").mkdir()
    (tmp_path / "monitoring" / "grafana.env").write_text("GF_SECURITY_ADMIN_USER=admin\n")
    _write(tmp_path / "monitoring" / "compose.yml", {
        'services': {
            'grafana': {'image': 'grafana/grafana', 'env_file': ['grafana.env'], 'ports': ['3000:3000']},
        },
    })
    base = _write(tmp_path / "docker-compose.yml", {
        'include': ['monitoring/compose.yml'],
        'services': {'prometheus': {'image': 'prom/prometheus'}},
    })
    orchestrator = PlanOrchestrator(PlanSettings(files=[base], environ={}))
    plan = orchestrator.build()
    assert plan.startup_order == ["grafana", "prometheus"]

    grafana = orchestrator.merge().services["grafana"]
    assert orchestrator.environment.get_merged_environment(grafana) == {"GF_SECURITY_ADMIN_USER": "admin"}
