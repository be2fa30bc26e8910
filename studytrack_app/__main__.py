from __future__ import annotations

from studytrack_app.controller import create_default_controller


def main() -> int:
    controller = create_default_controller()
    controller.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
