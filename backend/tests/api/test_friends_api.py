import pytest


def _headers(user) -> dict[str, str]:
	return {"X-User-Id": user.id}


@pytest.mark.asyncio
async def test_friend_request_lifecycle(api_client, make_user):
	alice = await make_user("alice")
	bob = await make_user("bob")

	sent = await api_client.post(f"/api/friends/send-request/{bob.id}", headers=_headers(alice))
	assert sent.status_code == 200
	assert sent.json()["user"]["friendship_status"] == "request_sent"

	duplicate = await api_client.post(f"/api/friends/send-request/{bob.id}", headers=_headers(alice))
	assert duplicate.status_code == 409

	requests = await api_client.get("/api/friends/requests", headers=_headers(bob))
	assert [u["id"] for u in requests.json()["received"]] == [alice.id]

	accepted = await api_client.post(f"/api/friends/accept-request/{alice.id}", headers=_headers(bob))
	assert accepted.status_code == 200
	assert accepted.json()["message"] == "Friend request accepted"

	for path in ("/api/friends/friends", "/api/friends/list"):
		friends = await api_client.get(path, headers=_headers(alice))
		assert [u["id"] for u in friends.json()] == [bob.id]

	status = await api_client.get(f"/api/friends/status/{bob.id}", headers=_headers(alice))
	assert status.json() == {"user_id": bob.id, "status": "friends"}

	removed = await api_client.delete(f"/api/friends/remove/{bob.id}", headers=_headers(alice))
	assert removed.status_code == 200
	gone = await api_client.delete(f"/api/friends/remove/{bob.id}", headers=_headers(alice))
	assert gone.status_code == 404


@pytest.mark.asyncio
async def test_search_and_missing_requests(api_client, make_user):
	alice = await make_user("alice")
	await make_user("albert")

	found = await api_client.get("/api/friends/search", params={"query": "al"}, headers=_headers(alice))
	assert [u["name"] for u in found.json()] == ["albert"]

	missing = await api_client.post("/api/friends/accept-request/nobody", headers=_headers(alice))
	assert missing.status_code == 404
	assert missing.json()["detail"] == "no_request"

	self_request = await api_client.post(f"/api/friends/send-request/{alice.id}", headers=_headers(alice))
	assert self_request.status_code == 400
