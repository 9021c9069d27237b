# src/iac_supervisor/__main__.py
from iac_supervisor.cli import app

app(prog_name="iac-supervisor")
