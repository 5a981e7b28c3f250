from .experience import Experience
from .policy_weights import PolicyWeights
from .feedback import FeedbackSignal
from .proposal import Proposal
from .agent_action import AgentAction
from .consent import UserConsent
from .audit_log import AuditLog
from .learning_job_run import LearningJobRun
from .job_lock import JobLock
from .behavioral_profile import BehavioralProfileSnapshot
from .task import Task
from .habit_log import HabitLog
from .journal_entry import JournalEntry

__all__ = [
    "Experience",
    "PolicyWeights",
    "FeedbackSignal",
    "Proposal",
    "AgentAction",
    "UserConsent",
    "AuditLog",
    "LearningJobRun",
    "JobLock",
    "BehavioralProfileSnapshot",
    "Task",
    "HabitLog",
    "JournalEntry",
]
