"""Example task script.

Prints its arguments and the task id it was started for, then exits 0.
"""

import os
import sys
from datetime import datetime


def main() -> int:
    task_id = os.environ.get("TASKWARDEN_TASK_ID", "?")
    print(f"[{datetime.now().isoformat()}] example task {task_id} args={sys.argv[1:]}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
