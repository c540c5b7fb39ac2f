from reshard.config.workflow_config import ReshardConfig

__all__ = ["ReshardConfig"]
