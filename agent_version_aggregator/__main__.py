"""
使用方式:
    python -m agent_version_aggregator --config config.yaml
"""

from .main import cli

if __name__ == "__main__":
    cli()
