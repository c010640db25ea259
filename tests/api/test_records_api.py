from datetime import timedelta

from coaching_engine.core.entities import utc_now


def _iso(hours_ago: float) -> str:
    return (utc_now() - timedelta(hours=hours_ago)).isoformat()


def test_missing_or_invalid_identity_is_rejected(client) -> None:
    assert client.get("/records/context").status_code == 401
    assert client.get("/records/context", headers={"X-User-Id": "bad id!"}).status_code == 401


def test_profile_upsert_round_trip(client, user_headers) -> None:
    headers = user_headers()
    first = client.put(
        "/records/profile",
        headers=headers,
        json={
            "name": "Sam",
            "primary_goal": "WEIGHT_LOSS",
            "restrictions": ["gluten"],
            "daily_calorie_target": 1800,
            "utc_offset_minutes": -300,
        },
    )
    assert first.status_code == 200
    assert first.json()["primary_goal"] == "WEIGHT_LOSS"
    assert first.json()["utc_offset_minutes"] == -300

    second = client.put("/records/profile", headers=headers, json={"name": "Sam", "primary_goal": "SLEEP_QUALITY"})
    assert second.status_code == 200
    assert second.json()["restrictions"] == []

    context = client.get("/records/context", headers=headers)
    assert context.json()["user_profile"]["primary_goal"] == "SLEEP_QUALITY"


def test_records_show_up_in_context(client, user_headers) -> None:
    headers = user_headers()
    meal = client.post(
        "/records/meals",
        headers=headers,
        json={
            "timestamp": _iso(2),
            "meal_type": "Lunch",
            "calories": 650,
            "protein": 35,
            "carbs": 70,
            "fat": 20,
            "foods": [{"name": "Chicken rice bowl", "calories": 650}],
            "post_meal_energy": 6,
        },
    )
    assert meal.status_code == 201
    assert meal.json()["kind"] == "meal"

    sleep = client.post(
        "/records/sleep",
        headers=headers,
        json={"date": _iso(10), "duration_hours": 7.5, "quality": 8, "pre_sleep_meal_size": "light"},
    )
    energy = client.post("/records/energy", headers=headers, json={"timestamp": _iso(1), "level": 7})
    activity = client.post(
        "/records/activity",
        headers=headers,
        json={"date": _iso(5), "type": "Strength", "duration_minutes": 45, "intensity": "high"},
    )
    assert [resp.status_code for resp in (sleep, energy, activity)] == [201, 201, 201]

    context = client.get("/records/context", headers=headers, params={"timeframe": "daily"})
    assert context.status_code == 200
    body = context.json()
    assert body["window_days"] == 1
    assert body["recent_meals"][0]["meal_type"] == "lunch"
    assert body["recent_meals"][0]["foods"][0]["name"] == "Chicken rice bowl"
    assert len(body["sleep_data"]) == 1
    assert body["activity_data"][0]["type"] == "strength"
    assert sorted(sample["context"] for sample in body["energy_levels"]) == ["check-in", "post-lunch"]


def test_meal_id_owned_by_another_user_conflicts(client, user_headers) -> None:
    payload = {"id": "shared-meal-id-1", "timestamp": _iso(1), "meal_type": "snack", "calories": 150}
    assert client.post("/records/meals", headers=user_headers(), json=payload).status_code == 201
    assert client.post("/records/meals", headers=user_headers(), json=payload).status_code == 409


def test_invalid_records_are_rejected(client, user_headers) -> None:
    headers = user_headers()
    bad_sleep = client.post(
        "/records/sleep", headers=headers, json={"date": _iso(8), "duration_hours": 7, "quality": 11}
    )
    bad_meal = client.post(
        "/records/meals", headers=headers, json={"timestamp": _iso(1), "meal_type": "lunch", "calories": -5}
    )
    bad_timeframe = client.get("/records/context", headers=headers, params={"timeframe": "yearly"})
    bad_offset = client.put("/records/profile", headers=headers, json={"utc_offset_minutes": 900})
    responses = [bad_sleep, bad_meal, bad_timeframe, bad_offset]
    assert [response.status_code for response in responses] == [422] * 4
