"""
procurement_tracker/blueprints

JSON blueprints registered by create_app():
- auth      /auth      session login for the current user
- requests  /requests  request list, detail and every mutation
- reports   /reports   dashboard counters, buyer performance
- activity  /activity  activity log (admin)
"""
