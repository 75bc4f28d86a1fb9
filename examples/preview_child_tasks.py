#!/usr/bin/env python
"""Show which templates apply to a work item and what each child would contain"""
import asyncio
import os
import sys
from dotenv import load_dotenv
from create_child_tasks.auth import AzureDevOpsAuth
from create_child_tasks.service_manager import ServiceManager


async def main(work_item_id: int):
    # Load environment
    load_dotenv()
    org_url = os.getenv('AZURE_DEVOPS_ORG_URL')
    project = os.getenv('AZURE_DEVOPS_PROJECT')
    team = os.getenv('AZURE_DEVOPS_TEAM')

    print(f"Organization: {org_url}")
    print(f"Project: {project}\n")

    auth = AzureDevOpsAuth(org_url)
    await auth.initialize()

    manager = ServiceManager(auth, default_project=project, default_team=team)
    orchestrator = await manager.get_orchestrator()

    result = await orchestrator.plan(work_item_id)

    print(f"Status: {result.status.value}")
    print(f"Child types: {', '.join(result.child_types) or 'none'}")
    if result.message:
        print(result.message)

    for plan in result.planned:
        print(f"\n[{plan.work_item_type}] {plan.template_name}")
        for op in plan.document:
            print(f"  {op['path']} = {op['value']}")

    for failure in result.failures:
        print(f"\nSkipped {failure['template_name']}: {failure['error']}")

    await auth.close()


if __name__ == '__main__':
    if len(sys.argv) != 2:
        sys.exit("usage: preview_child_tasks.py <work item id>")
    asyncio.run(main(int(sys.argv[1])))
