"""
Drift Engine - Main API Router

Aggregates all sub-routers so that ``drift_engine.main`` can mount the
entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from drift_engine.api import blocks, conversations, discover, friends, profiles, realtime, reports, swipes

router = APIRouter()

router.include_router(profiles.router, prefix="/profiles", tags=["Profiles"])
router.include_router(discover.router, prefix="/discover", tags=["Discovery"])
router.include_router(swipes.router, prefix="/swipes", tags=["Swipes & Matches"])
router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
router.include_router(friends.router, prefix="/friends", tags=["Friends"])
router.include_router(blocks.router, prefix="/blocks", tags=["Blocks"])
router.include_router(reports.router, prefix="/reports", tags=["Reports"])
router.include_router(realtime.router, prefix="/realtime", tags=["Realtime"])
