from .models import ServerConfig, ServerType, SessionState, WaitOutcome, RemoteArchiveDescriptor
from .session import SessionManager
