"""
Sync client tests.

  test_serializers.py            bridge payloads → Event / Room / RoomMember
  test_subscriptions.py          state machine, registry, channels
  test_auto_join.py              invite auto-join policy
  test_remote_bridge.py          HTTP transport (httpx.MockTransport)
  test_orchestrator_sync.py      subscriptions, diffs, error classes, stop
  test_orchestrator_requests.py  request/response operations
"""
