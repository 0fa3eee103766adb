import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
import argparse
import yaml
from sqlalchemy.orm import Session
from sqlalchemy.future import select
from core.db import Base, get_db_url, get_sync_engine
from commands import slugify
from models.project import Project
from models.service import Service, DeployStrategy
from models.deployment import Deployment  # 관계 모델 명시적 import
from models.audit_log import AuditLog  # noqa: F401
from models.error_log import ErrorLog  # noqa: F401

# 인벤토리 예시
#
# dashboard:
#   github_url: https://github.com/me/dashboard
#   services:
#     - name: dashboard-web
#       repo_path: /home/pi/projects/dashboard
#       compose_project: dashboard
#       deploy_strategy: pull_rebuild

STRATEGIES = {s.value for s in DeployStrategy}


def load_inventory(yaml_path):
    with open(yaml_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{yaml_path}: top level must be a mapping of project name -> definition")
    return data


def seed(session, inventory):
    created = 0
    for name, info in inventory.items():
        info = info or {}
        slug = info.get("slug") or slugify(name)
        project = session.execute(select(Project).where(Project.slug == slug)).scalars().first()
        if project is None:
            project = Project(name=name, slug=slug)
            session.add(project)
            created += 1
        project.description = info.get("description")
        project.github_url = info.get("github_url")
        session.flush()
        existing = {s.name: s for s in project.services}
        for svc in info.get("services") or []:
            strategy = svc.get("deploy_strategy", DeployStrategy.PULL_REBUILD.value)
            if strategy not in STRATEGIES:
                raise ValueError(f"{name}/{svc.get('name')}: unknown deploy_strategy {strategy!r}")
            service = existing.get(svc["name"])
            if service is None:
                service = Service(project_id=project.id, name=svc["name"])
                session.add(service)
            service.type = svc.get("type", "docker")
            service.repo_path = svc.get("repo_path")
            service.compose_project = svc.get("compose_project")
            service.deploy_strategy = strategy
    session.commit()
    return created


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed projects/services from a YAML inventory")
    parser.add_argument("yaml_path", nargs="?", default="projects.yaml")
    args = parser.parse_args()

    engine = get_sync_engine(get_db_url())
    # DB 테이블 생성 (없으면)
    Base.metadata.create_all(bind=engine)
    with Session(bind=engine) as session:
        count = seed(session, load_inventory(args.yaml_path))
    print(f"{args.yaml_path} → DB 반영 완료 ({count} new projects)")
