from __future__ import annotations

from sms_inbox.worker.runner import SchedulerConfig, run_scheduler_forever


def main() -> None:
    run_scheduler_forever(config=SchedulerConfig.from_settings())


if __name__ == "__main__":
    main()
