"""
Freelance Escrow Marketplace
SQLAlchemy extension instance shared by every model module.

Models:
    - project:      Project (with embedded escrow fields)
    - proposal:     Proposal, ProposalOffer (negotiation history)
    - escrow:       EscrowTransaction (append-only ledger log)
    - deliverable:  Deliverable, DeliverableRevision
    - milestone:    Milestone
    - invitation:   ProjectInvitation, QuoteRequest
    - notification: Notification (in-app delivery of lifecycle events)
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
