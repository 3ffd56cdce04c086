"""
Service layer.

- learning/: FSRS memory model, card selection, decks/cards, sprints
- notifications/: eligibility, grouping, delivery, orchestration
- users.py: reminder profile and push tokens
- home_service.py: home screen summary
- scheduler.py: periodic reminder ticks
"""
