from .runtime import OnlineConfig, config_from_mapping, load_config

__all__ = ["OnlineConfig", "config_from_mapping", "load_config"]
