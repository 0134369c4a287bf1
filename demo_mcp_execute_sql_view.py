# demo_mcp_execute_sql_view.py
# Version: v1
#
# Demo: call the MCP-style execute_sql_view task twice to show batching
# and the result cache.
#
# Usage (bash):
#
#   export DHIS2_BASE_URL="https://play.dhis2.org/40"
#   export DHIS2_USERNAME="admin"
#   export DHIS2_PASSWORD="district"
#   export DHIS2_TEST_VIEW="qMYMT0iUGkG"
#   export DHIS2_TEST_PARAMS="period:202401"
#   python demo_mcp_execute_sql_view.py
#
# Or, without a DHIS2 instance:
#
#   DHIS2_MOCK_MODE=1 DHIS2_TEST_VIEW=mockOrgUnits python demo_mcp_execute_sql_view.py

import asyncio
import os
from typing import Any, Dict

from dhis2_sqlview_mcp.tools import tasks

TEST_VIEW = os.environ.get("DHIS2_TEST_VIEW", "mockOrgUnits")
TEST_PARAMS = os.environ.get("DHIS2_TEST_PARAMS", "")
TEST_PAGE_SIZE = int(os.environ.get("DHIS2_TEST_PAGE_SIZE", "50"))


def _parse_params(raw: str) -> Dict[str, str]:
    """'a:1,b:2' -> {'a': '1', 'b': '2'}"""
    params: Dict[str, str] = {}
    for part in raw.split(","):
        if ":" in part:
            name, value = part.split(":", 1)
            params[name.strip()] = value.strip()
    return params


async def main() -> None:
    params = _parse_params(TEST_PARAMS)

    print("Calling MCP task: execute_sql_view()")
    print(f"View id:    {TEST_VIEW}")
    print(f"Variables:  {params}")
    print(f"Page size:  {TEST_PAGE_SIZE}")
    print()

    for attempt in (1, 2):
        result: Dict[str, Any] = await tasks.execute_sql_view(
            view_id=TEST_VIEW,
            parameters=params,
            page_size=TEST_PAGE_SIZE,
        )

        print(f"Run {attempt}:")
        print("  Rows:       ", result["row_count"])
        print("  Batches:    ", result["batch_count"])
        print("  From cache: ", result["from_cache"])
        print("  Time (ms):  ", result["execution_time_ms"])
        if result.get("warning"):
            print("  Warning:    ", result["warning"])
        print()

    print("Columns:", result["columns"])
    for i, row in enumerate(result.get("rows", [])[:5], start=1):
        print(f"  Row {i}: {row}")


if __name__ == "__main__":
    asyncio.run(main())
