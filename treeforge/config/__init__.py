# Application settings for TreeForge

from .settings import SettingsManager, settings_manager

__all__ = ['SettingsManager', 'settings_manager']
