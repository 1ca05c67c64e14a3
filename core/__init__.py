"""
Core package for BlurGuard.

Contains the headless BlockingEngine (core.engine), the error taxonomy
(core.errors) and the JSON storage helpers (core.storage). Zero UI
dependencies.

Import the engine as `from core.engine import BlockingEngine`; this
package must stay import-free since catalog and schedule depend on it.
"""
