#!/usr/bin/env python3
"""
Ad Service - picks the advertisement for a placement and records view/click
analytics once per impression
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from validators import AD_PLACEMENTS, ValidationError

logger = logging.getLogger(__name__)

# Placements shown as a full-screen break around a game session
GAME_BREAK_PLACEMENTS = ('pre-game', 'post-game')


class AdService:
    """Serve advertisements and count their impressions"""

    def __init__(self, storage, pre_game_skip_seconds: int = 5, impression_retention_hours: int = 24):
        self.storage = storage
        self.pre_game_skip_seconds = pre_game_skip_seconds
        self.impression_retention_hours = impression_retention_hours

    def _check_placement(self, placement: str) -> None:
        if placement not in AD_PLACEMENTS:
            raise ValidationError(
                'Invalid placement',
                [{'path': ['placement'], 'message': f"Must be one of: {', '.join(AD_PLACEMENTS)}"}]
            )

    def get_ads_for_placement(self, placement: str, now: Optional[datetime] = None) -> List[Dict]:
        """Eligible ads for a placement, highest priority first"""
        self._check_placement(placement)
        return self.storage.get_eligible_advertisements(placement, now)

    def serve(self, placement: str, now: Optional[datetime] = None) -> Optional[Dict]:
        """
        Pick the ad to show in a placement and open an impression for it.

        The returned dict is the advertisement plus an impressionId that the
        client sends back with view and click events. Returns None when no ad
        is eligible for the placement.
        """
        ads = self.get_ads_for_placement(placement, now)
        if not ads:
            logger.debug(f"No eligible advertisement for placement {placement}")
            return None

        ad = dict(ads[0])
        impression_id = uuid.uuid4().hex
        self.storage.create_impression(impression_id, ad['id'], placement)
        ad['impressionId'] = impression_id
        if placement in GAME_BREAK_PLACEMENTS:
            ad['skipAfterSeconds'] = self.pre_game_skip_seconds
        return ad

    def _record(self, ad_id: int, impression_id: str, field: str) -> bool:
        if not impression_id:
            raise ValidationError('Invalid tracking data',
                                  [{'path': ['impressionId'], 'message': 'Required'}])
        if not isinstance(impression_id, str):
            raise ValidationError('Invalid tracking data',
                                  [{'path': ['impressionId'], 'message': 'Expected string'}])
        if not self.storage.get_advertisement(ad_id):
            raise LookupError(f"Advertisement {ad_id} not found")
        counted = self.storage.mark_impression(impression_id, ad_id, field)
        if not counted:
            logger.debug(f"Ignoring repeated {field} event for impression {impression_id}")
        return counted

    def record_view(self, ad_id: int, impression_id: str) -> bool:
        """Count a view; False when this impression was already counted"""
        return self._record(ad_id, impression_id, 'viewed')

    def record_click(self, ad_id: int, impression_id: str) -> bool:
        """Count a click; False when this impression was already counted"""
        return self._record(ad_id, impression_id, 'clicked')

    def stats(self) -> Dict:
        stats = self.storage.get_advertisement_stats()
        views = stats['totalViews']
        stats['ctr'] = round(stats['totalClicks'] / views * 100, 2) if views else 0
        return stats

    def purge_stale_impressions(self, now: Optional[datetime] = None) -> int:
        """Forget impressions older than the retention window"""
        cutoff = (now or datetime.now()) - timedelta(hours=self.impression_retention_hours)
        purged = self.storage.purge_impressions(cutoff)
        if purged:
            logger.info(f"Purged {purged} ad impressions older than {cutoff.isoformat()}")
        return purged
