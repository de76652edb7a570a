from chat_orchestrator.api.app import ChatRuntime, build_runtime, create_app

__all__ = ["ChatRuntime", "build_runtime", "create_app"]
