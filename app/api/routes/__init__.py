from app.api.routes import gemmie, messages, tasks

__all__ = ["gemmie", "messages", "tasks"]
