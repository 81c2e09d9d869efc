"""Allow running as ``python -m iot_cicd``."""

from iot_cicd.cli import app

app(prog_name="iot-cicd")
