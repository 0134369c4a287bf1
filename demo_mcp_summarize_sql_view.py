# demo_mcp_summarize_sql_view.py
# Version: v1
#
# Demo: profile every column of a SQL view result with summarize_sql_view.
#
# Usage (bash):
#
#   export DHIS2_BASE_URL="https://play.dhis2.org/40"
#   export DHIS2_API_TOKEN="d2pat_..."
#   export DHIS2_TEST_VIEW="qMYMT0iUGkG"
#   python demo_mcp_summarize_sql_view.py

import asyncio
import os

from dhis2_sqlview_mcp.tools import tasks

TEST_VIEW = os.environ.get("DHIS2_TEST_VIEW", "mockDataElements")


async def main() -> None:
    print("Calling MCP task: summarize_sql_view()")
    print(f"View id: {TEST_VIEW}")
    print()

    result = await tasks.summarize_sql_view(view_id=TEST_VIEW)

    print("Rows profiled:", result["row_count"])
    print("From cache:  ", result["from_cache"])
    print()

    for column, info in result["columns"].items():
        print(f"{column}:")
        for key, value in info.items():
            print(f"  {key:<14} {value}")


if __name__ == "__main__":
    asyncio.run(main())
