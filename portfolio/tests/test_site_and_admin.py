import io
import re
import uuid
from datetime import date, datetime

import pytest
from markupsafe import escape
from PIL import Image

from portfolio import create_app
from portfolio.backend import AUTH_SIGNED_IN, EVENT_INSERT, get_backend
from portfolio.content import get_content_store
from portfolio.content_schemas import DEFAULT_ABOUT_COPY
from portfolio.models import (
    AuthRateLimitBucket,
    ContactMessage,
    ContentSection,
    Media,
    Order,
    Project,
    Review,
    User,
    UserRole,
    db,
)
from portfolio.routes.admin import build_dashboard_stats, estimate_budget_value

CSRF_TOKEN_RE = re.compile(r'name="_csrf_token" value="([^"]+)"')
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin123"


def extract_csrf_token(html):
    match = CSRF_TOKEN_RE.search(html or "")
    return match.group(1) if match else None


def build_test_app(tmp_path, monkeypatch, overrides=None):
    db_path = tmp_path / f"site_test_{uuid.uuid4().hex[:8]}.db"
    upload_path = tmp_path / f"uploads_{uuid.uuid4().hex[:8]}"

    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)

    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "UPLOAD_FOLDER": str(upload_path),
        "ADMIN_EMAIL": ADMIN_EMAIL,
        "SMTP_HOST": "",
        "MAILGUN_API_KEY": "",
        "LOG_JSON": False,
    }
    if overrides:
        config.update(overrides)

    app = create_app(config)
    with app.app_context():
        AuthRateLimitBucket.query.delete()
        db.session.commit()
    return app


@pytest.fixture()
def app(tmp_path, monkeypatch):
    return build_test_app(tmp_path, monkeypatch)


@pytest.fixture()
def client(app):
    return app.test_client()


def sign_in(client, email=ADMIN_EMAIL, password=ADMIN_PASSWORD, admin=True):
    path = "/auth?admin=1" if admin else "/auth"
    login_page = client.get(path)
    csrf_token = extract_csrf_token(login_page.get_data(as_text=True))
    assert csrf_token

    data = {"_csrf_token": csrf_token, "email": email, "password": password}
    if admin:
        data["admin"] = "1"
    return client.post(path, data=data, follow_redirects=False)


def admin_login(client):
    response = sign_in(client)
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith("/admin/")


def admin_csrf(client, tab="dashboard"):
    page = client.get(f"/admin/?tab={tab}")
    assert page.status_code == 200
    csrf_token = extract_csrf_token(page.get_data(as_text=True))
    assert csrf_token
    return csrf_token


def create_user(app, email, password="member-pass", role="user"):
    with app.app_context():
        user = User(email=email, display_name="Member")
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        db.session.add(UserRole(user_id=user.id, role=role))
        db.session.commit()
        return user.id


def create_order(app, **fields):
    values = {
        "customer_name": "Rahim",
        "customer_email": "rahim@example.com",
        "service_type": "telegram-bot",
        "project_description": "Shop bot",
        "budget_range": "100-300",
        "timeline": "1-week",
        "payment_method": "fiverr",
        "status": "pending",
        "payment_status": "pending",
    }
    values.update(fields)
    with app.app_context():
        order = Order(**values)
        db.session.add(order)
        db.session.commit()
        return order.id


def flashes(client):
    with client.session_transaction() as session:
        return [message for _, message in session.get("_flashes", [])]


# Public site


def test_public_page_renders_seeded_content_and_security_headers(client):
    response = client.get("/")
    assert response.status_code == 200
    csp = response.headers.get("Content-Security-Policy", "")
    assert "script-src 'self' 'nonce-" in csp
    assert "'unsafe-inline'" not in csp
    assert response.headers.get("X-Frame-Options") == "DENY"
    assert response.headers.get("X-Content-Type-Options") == "nosniff"
    assert response.headers.get("X-Request-ID")

    html = response.get_data(as_text=True)
    assert 'href="#main-content"' in html
    assert '<script nonce="' in html
    assert "style=" not in html
    assert "Mushfiq&#39;s Bots" in html
    assert "Md Moshfiqur Rahaman" in html
    assert "Automate Success" in html
    assert "Telegram Shop Bot" in html
    assert 'id="order"' in html


def test_public_page_renders_default_about_copy_and_services(client):
    html = client.get("/").get_data(as_text=True)
    assert str(escape(DEFAULT_ABOUT_COPY)) in html
    assert "built-in method" not in html
    assert "Telegram &amp; Discord Bots" in html


def test_logo_fallback_covers_images_that_failed_before_script_ran(client, app):
    with app.app_context():
        settings = ContentSection.query.filter_by(section_type="settings").first()
        settings.section_metadata = {**settings.section_metadata, "logoUrl": "/missing-logo.png"}
        db.session.commit()
    html = client.get("/").get_data(as_text=True)
    assert 'data-fallback="' in html
    assert "img.complete && img.naturalWidth === 0" in html


def test_stylesheet_scrolls_anchors_smoothly(client):
    response = client.get("/static/css/style.css")
    assert response.status_code == 200
    assert "scroll-behavior: smooth" in response.get_data(as_text=True)
    response.close()


def test_auth_and_admin_pages_are_not_indexed(client):
    assert client.get("/auth").headers.get("X-Robots-Tag") == "noindex, nofollow, noarchive"
    assert client.get("/admin/").headers.get("X-Robots-Tag") == "noindex, nofollow, noarchive"


def test_hsts_header_on_https_requests(client):
    response = client.get("/", base_url="https://example.com")
    assert response.headers.get("Strict-Transport-Security") == "max-age=31536000; includeSubDomains"


def test_health_and_readiness(client):
    assert client.get("/healthz").get_json()["status"] == "ok"
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.get_json()["checks"] == {
        "database": True,
        "content_sections_seeded": True,
        "admin_user_seeded": True,
    }


def test_unknown_page_renders_404(client):
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    assert "Page not found" in response.get_data(as_text=True)


def test_contact_post_requires_csrf(client, app):
    response = client.post(
        "/contact",
        data={"name": "No Token", "email": "notoken@example.com", "message": "Should fail"},
        follow_redirects=False,
    )
    assert response.status_code in (302, 400)
    with app.app_context():
        assert ContactMessage.query.count() == 0


def test_contact_post_with_csrf_succeeds(client, app):
    csrf_token = extract_csrf_token(client.get("/").get_data(as_text=True))
    email = f"contact-{uuid.uuid4().hex[:8]}@example.com"
    response = client.post(
        "/contact",
        data={
            "_csrf_token": csrf_token,
            "name": "QA Contact",
            "email": email,
            "project": "Discord bot",
            "message": "Contact smoke test",
        },
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith("#contact")
    with app.app_context():
        saved = ContactMessage.query.filter_by(email=email).first()
        assert saved is not None
        assert saved.status == "unread"
        assert saved.project == "Discord bot"


def test_contact_form_rate_limit_blocks_second_submission(client, app):
    app.config.update({"CONTACT_FORM_LIMIT": 1, "CONTACT_FORM_WINDOW_SECONDS": 3600})
    csrf_token = extract_csrf_token(client.get("/").get_data(as_text=True))
    for index in range(2):
        client.post(
            "/contact",
            data={
                "_csrf_token": csrf_token,
                "name": f"Rate {index}",
                "email": f"rate-{index}@example.com",
                "message": "Rate limit test",
            },
        )
    with app.app_context():
        assert ContactMessage.query.filter_by(email="rate-0@example.com").first() is not None
        assert ContactMessage.query.filter_by(email="rate-1@example.com").first() is None


def test_order_form_creates_pending_order(client, app):
    csrf_token = extract_csrf_token(client.get("/").get_data(as_text=True))
    response = client.post(
        "/order",
        data={
            "_csrf_token": csrf_token,
            "customer_name": "Karim",
            "customer_email": "Karim@Example.com",
            "service_type": "discord-bot",
            "project_description": "Moderation bot",
            "budget_range": "200",
            "timeline": "2-weeks",
            "payment_method": "crypto",
            "payment_proof": "TX123",
        },
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)
    with app.app_context():
        order = Order.query.filter_by(customer_email="karim@example.com").first()
        assert order is not None
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.payment_proof == "TX123"
    assert any("TRC20 wallet" in message for message in flashes(client))


def test_order_form_requires_proof_for_manual_payments(client, app):
    csrf_token = extract_csrf_token(client.get("/").get_data(as_text=True))
    client.post(
        "/order",
        data={
            "_csrf_token": csrf_token,
            "customer_name": "Karim",
            "customer_email": "karim@example.com",
            "service_type": "discord-bot",
            "project_description": "Moderation bot",
            "budget_range": "200",
            "timeline": "2-weeks",
            "payment_method": "bkash",
        },
    )
    with app.app_context():
        assert Order.query.count() == 0


def test_order_api_accepts_json_without_form_token(client, app):
    response = client.post(
        "/api/submit-order",
        json={
            "customerName": "Api Client",
            "customerEmail": "api@example.com",
            "serviceType": "automation-script",
            "projectDescription": "Scrape prices",
            "projectRequirements": ["Daily run", "CSV export"],
            "budgetRange": "500+",
            "timeline": "1-month",
            "paymentMethod": "upwork",
        },
    )
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["order"]["status"] == "pending"
    assert payload["order"]["project_requirements"] == "Daily run\nCSV export"


def test_order_api_rejects_invalid_payloads(client):
    assert client.post("/api/submit-order", json=["not", "an", "object"]).status_code == 400
    response = client.post("/api/submit-order", json={"customerName": "Only name"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Please fill in all required fields."


def test_review_requires_completed_order_and_starts_unapproved(client, app):
    create_order(app, customer_email="buyer@example.com", status="pending")
    completed_id = create_order(app, customer_email="buyer@example.com", status="completed")

    page = client.get("/reviews/lookup?email=buyer@example.com")
    assert page.status_code == 200
    html = page.get_data(as_text=True)
    assert f'name="order_id" value="{completed_id}"' in html
    csrf_token = extract_csrf_token(html)

    response = client.post(
        "/reviews",
        data={
            "_csrf_token": csrf_token,
            "email": "buyer@example.com",
            "order_id": str(completed_id),
            "reviewer_name": "Buyer",
            "rating": "5",
            "review_text": "Great work",
        },
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)
    with app.app_context():
        review = Review.query.filter_by(order_id=completed_id).first()
        assert review is not None
        assert review.is_approved is False
        assert review.reviewer_email == "buyer@example.com"


def test_review_rejected_for_order_that_is_not_completed(client, app):
    pending_id = create_order(app, customer_email="early@example.com", status="pending")
    csrf_token = extract_csrf_token(client.get("/").get_data(as_text=True))
    client.post(
        "/reviews",
        data={
            "_csrf_token": csrf_token,
            "email": "early@example.com",
            "order_id": str(pending_id),
            "review_text": "Too soon",
        },
    )
    with app.app_context():
        assert Review.query.count() == 0


def test_public_json_endpoints(client, app):
    with app.app_context():
        project = Project.query.order_by(Project.sort_order).first()
        db.session.add(Review(
            reviewer_name="Happy",
            reviewer_email="happy@example.com",
            rating=5,
            review_text="Excellent",
            is_approved=True,
            project_id=project.id,
        ))
        db.session.add(Review(reviewer_name="Hidden", rating=1, review_text="Pending", is_approved=False))
        db.session.commit()

    sections = client.get("/api/content-sections").get_json()["sections"]
    assert {row["section_type"] for row in sections} >= {"hero", "about", "settings"}

    projects = client.get("/api/projects").get_json()["projects"]
    assert projects[0]["title"] == "Telegram Shop Bot"
    assert projects[0]["review_count"] == 1
    assert projects[0]["average_rating"] == 5.0

    reviews = client.get("/api/reviews").get_json()
    assert [review["reviewer_name"] for review in reviews["reviews"]] == ["Happy"]
    assert "reviewer_email" not in reviews["reviews"][0]
    assert reviews["summary"]["count"] == 1


# Backend and live content


def test_backend_publishes_only_committed_changes(app):
    received = []
    backend = app.extensions["backend"]
    subscription = backend.subscribe("projects", received.append)

    with app.app_context():
        db.session.add(Project(title="Rolled back"))
        db.session.flush()
        db.session.rollback()
        assert received == []

        db.session.add(Project(title="Committed"))
        db.session.commit()

    assert len(received) == 1
    assert received[0].event == EVENT_INSERT
    assert received[0].record["title"] == "Committed"

    subscription.unsubscribe()
    with app.app_context():
        db.session.add(Project(title="After unsubscribe"))
        db.session.commit()
    assert len(received) == 1


def test_backend_role_prefers_admin(app):
    user_id = create_user(app, "multi@example.com")
    with app.app_context():
        db.session.add(UserRole(user_id=user_id, role="admin"))
        db.session.commit()
        assert get_backend().get_role(user_id) == "admin"


def test_backend_emits_auth_events(client, app):
    events = []
    app.extensions["backend"].on_auth_state_change(lambda event, user: events.append((event, user)))
    admin_login(client)
    assert events[0][0] == AUTH_SIGNED_IN
    assert events[0][1]["email"] == ADMIN_EMAIL


def test_content_store_follows_database_commits(app):
    store = get_content_store(app)
    with app.app_context():
        hero = ContentSection.query.filter_by(section_type="hero").first()
        hero.title = "Updated hero"
        db.session.commit()
    assert store.get_section("hero")["title"] == "Updated hero"

    with app.app_context():
        db.session.delete(ContentSection.query.filter_by(section_type="hero").first())
        db.session.commit()
    assert store.get_section("hero") is None


def test_content_store_follows_bulk_statements(tmp_path, monkeypatch):
    app = build_test_app(tmp_path, monkeypatch, {"CONTENT_SYNC_INTERVAL_SECONDS": 3600})
    store = get_content_store(app)
    with app.app_context():
        ContentSection.query.filter_by(section_type="hero").update({"title": "Bulk hero"}, synchronize_session=False)
        db.session.commit()
    assert store.get_section("hero")["title"] == "Bulk hero"

    with app.app_context():
        ContentSection.query.filter_by(section_type="hero").delete(synchronize_session=False)
        db.session.commit()
    assert store.get_section("hero") is None


def test_content_written_by_another_worker_reaches_this_worker(tmp_path, monkeypatch):
    shared = {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'shared.db'}",
        "CONTENT_SYNC_INTERVAL_SECONDS": 0,
    }
    worker_a = build_test_app(tmp_path, monkeypatch, shared)
    worker_b = build_test_app(tmp_path, monkeypatch, shared)

    with worker_a.app_context():
        settings = ContentSection.query.filter_by(section_type="settings").first()
        settings.section_metadata = {**settings.section_metadata, "brandName": "Edited Brand"}
        db.session.commit()
    assert get_content_store(worker_a).get_metadata("settings")["brandName"] == "Edited Brand"
    assert get_content_store(worker_b).get_metadata("settings")["brandName"] != "Edited Brand"

    html = worker_b.test_client().get("/").get_data(as_text=True)
    assert "Edited Brand" in html
    assert get_content_store(worker_b).get_metadata("settings")["brandName"] == "Edited Brand"


# Admin


def test_admin_requires_sign_in(client):
    response = client.get("/admin/", follow_redirects=False)
    assert response.status_code in (302, 303)
    assert "/auth?admin=1" in response.headers["Location"]


def test_non_admin_is_sent_home_with_notice(client, app):
    create_user(app, "member@example.com", role="user")
    response = sign_in(client, email="member@example.com", password="member-pass", admin=False)
    assert response.status_code in (302, 303)

    response = client.get("/admin/", follow_redirects=False)
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith("/")
    assert "You don't have admin permissions." in flashes(client)


def test_admin_login_post_requires_csrf(client):
    response = client.post(
        "/auth?admin=1",
        data={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD, "admin": "1"},
        follow_redirects=False,
    )
    assert response.status_code in (302, 400)
    assert client.get("/admin/", follow_redirects=False).status_code in (302, 303)


def test_admin_login_rate_limit_blocks_after_threshold(client):
    csrf_token = extract_csrf_token(client.get("/auth").get_data(as_text=True))
    for _ in range(5):
        response = client.post(
            "/auth",
            data={"_csrf_token": csrf_token, "email": ADMIN_EMAIL, "password": "wrong"},
        )
        assert response.status_code == 200
    blocked = client.post(
        "/auth",
        data={"_csrf_token": csrf_token, "email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
    )
    assert blocked.status_code == 429


def test_admin_every_tab_renders(client):
    admin_login(client)
    for tab in ("dashboard", "orders", "messages", "content", "projects", "reviews", "users", "analytics"):
        response = client.get(f"/admin/?tab={tab}")
        assert response.status_code == 200, tab
        html = response.get_data(as_text=True)
        assert f'id="panel-{tab}"' in html
        assert "style=" not in html
    unknown = client.get("/admin/?tab=bogus")
    assert 'id="panel-dashboard"' in unknown.get_data(as_text=True)


def test_admin_sign_out_returns_to_admin_login(client):
    admin_login(client)
    csrf_token = admin_csrf(client)
    response = client.post("/auth/logout", data={"_csrf_token": csrf_token, "admin": "1"})
    assert response.headers["Location"].endswith("/auth?admin=1")
    assert client.get("/admin/", follow_redirects=False).status_code in (302, 303)


def test_admin_shell_sign_out_goes_through_access_gate(client, app):
    admin_login(client)
    csrf_token = admin_csrf(client)
    response = client.post("/admin/logout", data={"_csrf_token": csrf_token})
    assert response.status_code in (302, 303)
    assert response.headers["Location"].endswith("/auth?admin=1")
    assert app.extensions["backend"]._auth_listeners == []
    assert client.get("/admin/", follow_redirects=False).status_code in (302, 303)


def test_admin_content_edit_updates_public_page(client, app):
    admin_login(client)
    with app.app_context():
        hero_id = ContentSection.query.filter_by(section_type="hero").first().id
    csrf_token = admin_csrf(client, "content")

    response = client.post(
        "/admin/content/save",
        data={
            "_csrf_token": csrf_token,
            "id": str(hero_id),
            "section_type": "hero",
            "title": "Hero",
            "is_active": "1",
            "sort_order": "0",
            "content": "<p>ok</p><script>alert(1)</script>",
            "metadata": '{"headline": "Ship Bots Faster", "highlight": "Today"}',
        },
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)

    with app.app_context():
        saved = db.session.get(ContentSection, hero_id)
        assert saved.section_metadata["headline"] == "Ship Bots Faster"
        assert "<script>" not in saved.content

    html = client.get("/").get_data(as_text=True)
    assert "Ship Bots Faster" in html


def test_admin_content_rejects_invalid_metadata(client, app):
    admin_login(client)
    csrf_token = admin_csrf(client, "content")
    with app.app_context():
        before = ContentSection.query.count()
    for metadata in ("{not json", "[1, 2]"):
        client.post(
            "/admin/content/save",
            data={"_csrf_token": csrf_token, "section_type": "about", "metadata": metadata},
        )
    with app.app_context():
        assert ContentSection.query.count() == before


def test_admin_order_status_and_payment_updates(client, app):
    order_id = create_order(app)
    admin_login(client)
    csrf_token = admin_csrf(client, "orders")

    client.post(f"/admin/orders/{order_id}/status", data={"_csrf_token": csrf_token, "status": "in_progress"})
    client.post(f"/admin/orders/{order_id}/payment", data={"_csrf_token": csrf_token, "payment_status": "paid"})
    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "in_progress"
        assert order.payment_status == "paid"

    listing = client.get("/admin/?tab=orders&status=completed").get_data(as_text=True)
    assert f"#{order_id} Telegram Bot" not in listing
    listing = client.get("/admin/?tab=orders&q=rahim").get_data(as_text=True)
    assert f"#{order_id} Telegram Bot" in listing

    client.post(f"/admin/orders/{order_id}/delete", data={"_csrf_token": csrf_token})
    with app.app_context():
        assert db.session.get(Order, order_id) is None


def test_admin_message_workflow(client, app):
    with app.app_context():
        message = ContactMessage(name="Lead", email="lead@example.com", message="Hi", status="unread")
        db.session.add(message)
        db.session.commit()
        message_id = message.id
    admin_login(client)
    csrf_token = admin_csrf(client, "messages")

    client.post(f"/admin/messages/{message_id}/status", data={"_csrf_token": csrf_token, "status": "replied"})
    client.post(f"/admin/messages/{message_id}/notes", data={"_csrf_token": csrf_token, "admin_notes": "Sent quote"})
    with app.app_context():
        saved = db.session.get(ContactMessage, message_id)
        assert saved.status == "replied"
        assert saved.admin_notes == "Sent quote"


def test_admin_project_and_review_management(client, app):
    admin_login(client)
    csrf_token = admin_csrf(client, "projects")
    client.post(
        "/admin/projects/save",
        data={
            "_csrf_token": csrf_token,
            "title": "Signal Bot",
            "technologies": "Python, Redis , ",
            "sort_order": "9",
        },
    )
    with app.app_context():
        project = Project.query.filter_by(title="Signal Bot").first()
        assert project.technologies == ["Python", "Redis"]
        review = Review(reviewer_name="R", rating=4, review_text="Solid", is_approved=False, project_id=project.id)
        db.session.add(review)
        db.session.commit()
        review_id = review.id

    client.post(f"/admin/reviews/{review_id}/toggle/is_approved", data={"_csrf_token": csrf_token})
    client.post(
        f"/admin/reviews/{review_id}/edit",
        data={"_csrf_token": csrf_token, "rating": "9", "review_text": "Very solid"},
    )
    with app.app_context():
        review = db.session.get(Review, review_id)
        assert review.is_approved is True
        assert review.rating == 5
        assert review.review_text == "Very solid"

    assert client.post(f"/admin/reviews/{review_id}/toggle/rating", data={"_csrf_token": csrf_token}).status_code == 404
    projects = client.get("/api/projects").get_json()["projects"]
    signal = next(item for item in projects if item["title"] == "Signal Bot")
    assert signal["review_count"] == 1


def test_admin_user_roles(client, app):
    member_id = create_user(app, "promote@example.com")
    admin_login(client)
    csrf_token = admin_csrf(client, "users")

    client.post(f"/admin/users/{member_id}/role", data={"_csrf_token": csrf_token, "role": "admin"})
    with app.app_context():
        assert [row.role for row in UserRole.query.filter_by(user_id=member_id)] == ["admin"]
        admin_id = User.query.filter_by(email=ADMIN_EMAIL).first().id

    client.post(f"/admin/users/{admin_id}/role", data={"_csrf_token": csrf_token, "role": "user"})
    with app.app_context():
        assert UserRole.query.filter_by(user_id=admin_id, role="admin").first() is not None


def test_admin_upload_and_export(client, app):
    admin_login(client)
    csrf_token = admin_csrf(client, "content")
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(20, 40, 60)).save(buffer, format="PNG")
    buffer.seek(0)

    response = client.post(
        "/admin/upload",
        data={"_csrf_token": csrf_token, "tab": "content", "file": (buffer, "logo.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert response.status_code in (302, 303)
    with app.app_context():
        media = Media.query.first()
        assert media is not None
        stored_name = media.file_path
    assert client.get(f"/admin/uploads/{stored_name}").status_code == 200
    assert client.get("/admin/uploads/..%2Fsite.db").status_code == 404

    bad = client.post(
        "/admin/upload",
        data={"_csrf_token": csrf_token, "file": (io.BytesIO(b"not an image"), "evil.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert bad.status_code in (302, 303)
    with app.app_context():
        assert Media.query.count() == 1

    export = client.get("/admin/export")
    assert export.status_code == 200
    assert "attachment" in export.headers["Content-Disposition"]
    payload = export.get_json()
    assert set(payload) == {"orders", "users", "projects", "reviews", "export_date"}
    assert all("password_hash" not in user for user in payload["users"])


def test_csrf_failure_redirect_rejects_external_referrer(client):
    response = client.post(
        "/contact",
        data={"name": "x", "email": "x@example.com", "message": "x"},
        headers={"Referer": "https://evil.example/phish"},
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)
    assert "evil.example" not in response.headers["Location"]


# Dashboard figures


def test_estimate_budget_value():
    assert estimate_budget_value("100-300") == 200
    assert estimate_budget_value("$500+") == 500
    assert estimate_budget_value("1,000") == 1000
    assert estimate_budget_value("negotiable") == 0
    assert estimate_budget_value(None) == 0


def test_build_dashboard_stats():
    today = date(2026, 3, 10)
    orders = [
        {"id": 1, "status": "completed", "service_type": "telegram-bot", "budget_range": "100-300",
         "created_at": datetime(2026, 3, 10, 9).isoformat()},
        {"id": 2, "status": "pending", "service_type": "telegram-bot", "budget_range": "50",
         "created_at": datetime(2026, 3, 8, 9).isoformat()},
        {"id": 3, "status": "pending", "service_type": "discord-bot", "budget_range": "500+",
         "created_at": datetime(2026, 2, 1, 9).isoformat()},
    ]
    messages = [{"status": "unread"}, {"status": "read"}]
    stats = build_dashboard_stats(orders, messages, users_total=4, projects_total=3, reviews_total=2, today=today)

    assert stats["total_orders"] == 3
    assert stats["completed_orders"] == 1
    assert stats["pending_orders"] == 2
    assert stats["total_revenue"] == 750
    assert stats["today_orders"] == 1
    assert [point["date"] for point in stats["order_trend"]][0] == "2026-03-04"
    assert [point["count"] for point in stats["order_trend"]] == [0, 0, 0, 0, 1, 0, 1]
    assert stats["top_services"][0] == {"service": "Telegram Bot", "count": 2}
    assert [order["id"] for order in stats["recent_orders"]] == [1, 2, 3]
    assert stats["unread_messages"] == 1
