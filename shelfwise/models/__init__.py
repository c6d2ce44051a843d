from shelfwise.models.graph import ListSeed, ReadingLog, WorkCooccurrence, WorkGraphFeatures
from shelfwise.models.profile import CandidateCache, UserProfile
from shelfwise.models.quality import WorkQuality, WorkRating
from shelfwise.models.reading import Block, ReadingAggregate, ReadingEvent
from shelfwise.models.work import Author, Work, WorkSubject, work_author_association

__all__ = [
    "Work",
    "Author",
    "WorkSubject",
    "work_author_association",
    "ReadingEvent",
    "ReadingAggregate",
    "Block",
    "WorkRating",
    "WorkQuality",
    "WorkGraphFeatures",
    "ReadingLog",
    "ListSeed",
    "WorkCooccurrence",
    "UserProfile",
    "CandidateCache",
]
