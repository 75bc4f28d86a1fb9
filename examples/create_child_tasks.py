#!/usr/bin/env python
"""Create child tasks for one or more work items from the team's templates"""
import asyncio
import os
import sys
from dotenv import load_dotenv
from create_child_tasks.auth import AzureDevOpsAuth
from create_child_tasks.config import configure_logging
from create_child_tasks.models import ActionContext
from create_child_tasks.service_manager import ServiceManager


async def main(work_item_ids):
    load_dotenv()
    configure_logging(os.getenv('CHILD_TASKS_LOG_MODE', 'release'))

    auth = AzureDevOpsAuth(os.getenv('AZURE_DEVOPS_ORG_URL'))
    await auth.initialize()

    manager = ServiceManager(
        auth,
        default_project=os.getenv('AZURE_DEVOPS_PROJECT'),
        default_team=os.getenv('AZURE_DEVOPS_TEAM')
    )
    orchestrator = await manager.get_orchestrator()

    results = await orchestrator.run(ActionContext(work_item_ids=work_item_ids))

    for result in results:
        print(f"Work item {result.parent_id}: {result.status.value}")
        for child in result.created:
            print(f"  created {child.id} from {child.template_name}")
        for failure in result.failures:
            print(f"  failed {failure['template_name']} ({failure['stage']}): {failure['error']}")

    await auth.close()


if __name__ == '__main__':
    if len(sys.argv) < 2:
        sys.exit("usage: create_child_tasks.py <work item id> [<work item id> ...]")
    asyncio.run(main([int(arg) for arg in sys.argv[1:]]))
