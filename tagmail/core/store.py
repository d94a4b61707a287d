"""
Store
=====

The narrow persistence interface the campaign lifecycle and the scheduler
work against. Wraps a Database handle and delegates to the module models;
each call commits before it returns, so a transition is durable before
the next scheduler tick or request can observe it.
"""

from tagmail.modules.campaigns import models as campaign_models
from tagmail.modules.databases import models as database_models


class Store:
    """Campaign-facing persistence operations for one Database handle"""

    def __init__(self, db):
        self.db = db

    def get_due_campaigns(self, database_id, now=None):
        return campaign_models.get_due_campaigns(self.db, database_id, now)

    def get_sending_campaigns(self, database_id):
        return campaign_models.get_sending_campaigns(self.db, database_id)

    def update_campaign(self, campaign, expected_status=None):
        campaign_models.update_campaign(self.db, campaign, expected_status)

    def get_database_contents(self, database_id):
        return database_models.get_database_contents(self.db, database_id)

    def add_campaign(self, database_id, campaign):
        return campaign_models.add_campaign(self.db, database_id, campaign)

    def get_campaign(self, campaign_id):
        return campaign_models.get_campaign(self.db, campaign_id)

    def delete_campaign(self, campaign_id):
        campaign_models.delete_campaign(self.db, campaign_id)
