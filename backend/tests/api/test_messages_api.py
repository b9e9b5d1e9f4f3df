import pytest


def _headers(user) -> dict[str, str]:
	return {"X-User-Id": user.id}


@pytest.mark.asyncio
async def test_direct_message_endpoints(api_client, make_user):
	alice = await make_user("alice")
	bob = await make_user("bob")

	sent = await api_client.post(
		"/api/messages/send",
		json={"recipient_id": bob.id, "body": "hello"},
		headers=_headers(alice),
	)
	assert sent.status_code == 201
	message_id = sent.json()["id"]

	history = await api_client.get(f"/api/messages/fetch/{alice.id}", headers=_headers(bob))
	assert [m["body"] for m in history.json()] == ["hello"]

	read = await api_client.post(f"/api/messages/mark-read/{message_id}", headers=_headers(bob))
	assert read.json()["status"] == "read"

	reaction = await api_client.post(
		f"/api/messages/reactions/{message_id}", json={"emoji": "🔥"}, headers=_headers(bob)
	)
	assert reaction.json()["added"] is True
	reactions = await api_client.get(f"/api/messages/reactions/{message_id}", headers=_headers(alice))
	assert [u["id"] for u in reactions.json()["🔥"]] == [bob.id]

	batch = await api_client.post(
		"/api/messages/status-batch", json={"message_ids": [message_id, "missing"]}, headers=_headers(alice)
	)
	assert list(batch.json()) == [message_id]

	forbidden = await api_client.delete(f"/api/messages/delete/{message_id}", headers=_headers(bob))
	assert forbidden.status_code == 403
	deleted = await api_client.delete(f"/api/messages/delete/{message_id}", headers=_headers(alice))
	assert deleted.status_code == 200
	assert (await api_client.get(f"/api/messages/status/{message_id}", headers=_headers(alice))).status_code == 404


@pytest.mark.asyncio
async def test_group_messages_route_before_direct(api_client, make_user):
	alice = await make_user("alice")
	bob = await make_user("bob")
	created = await api_client.post(
		"/api/groups/create", json={"name": "Team", "members": [bob.id]}, headers=_headers(alice)
	)
	group_id = created.json()["id"]

	sent = await api_client.post(
		"/api/messages/group/send", json={"group_id": group_id, "body": "hi team"}, headers=_headers(bob)
	)
	assert sent.status_code == 201

	history = await api_client.get(f"/api/messages/fetch/group/{group_id}", headers=_headers(alice))
	assert [m["body"] for m in history.json()] == ["hi team"]

	cleared = await api_client.delete(f"/api/messages/clear-group/{group_id}", headers=_headers(alice))
	assert cleared.json() == {"cleared_count": 1}


@pytest.mark.asyncio
async def test_attachment_upload(api_client, media_store, make_user):
	alice = await make_user("alice")

	response = await api_client.post(
		"/api/messages/upload/document",
		files=[("files", ("notes.txt", b"some notes", "text/plain"))],
		headers=_headers(alice),
	)
	assert response.status_code == 200
	assert len(response.json()["document_urls"]) == 1

	bad = await api_client.post(
		"/api/messages/upload/document",
		files=[("files", ("run.exe", b"MZ", "application/x-msdownload"))],
		headers=_headers(alice),
	)
	assert bad.status_code == 400
	assert bad.json()["detail"] == "mime_invalid"
