import logging

from flask import Blueprint, jsonify, make_response, request
from sqlalchemy.exc import SQLAlchemyError

from .app import client_ip, components, get_auth
from .errors import AuthError
from .models import SecondFactorKind

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


# --- COOKIE HELPERS ---

def set_refresh_cookie(response, token: str):
    settings = components().settings
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME, token,
        httponly=True,  # No JS access
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        path=settings.COOKIE_PATH,
        max_age=settings.REFRESH_TOKEN_EXPIRES_DAYS * 24 * 60 * 60,
    )
    return response


def clear_refresh_cookie(response):
    settings = components().settings
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME, '',
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        path=settings.COOKIE_PATH,
        max_age=0,
    )
    return response


def _refresh_cookie():
    return request.cookies.get(components().settings.REFRESH_COOKIE_NAME)


def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token:
        return None
    return token.strip()


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _session_response(session, status=200):
    resp = make_response(jsonify({
        'user': session.user.to_public_dict(),
        'accessToken': session.access_token,
    }), status)
    return set_refresh_cookie(resp, session.refresh_token)


# --- AUTH ROUTES ---

@auth_bp.route('/register', methods=['POST'])
def register():
    data = _json_body()
    auth = get_auth()
    user, code = auth.register_user(
        data.get('email'),
        data.get('password'),
        data.get('username'),
        data.get('displayName'),
        ip_address=client_ip(),
    )
    body = {
        'message': 'Registration successful. Please verify your email.',
        'email': user.email,
    }
    settings = components().settings
    if settings.EXPOSE_VERIFICATION_CODE and settings.is_development:
        body['code'] = code
    return jsonify(body), 200


@auth_bp.route('/verify', methods=['POST'])
def verify():
    data = _json_body()
    session = get_auth().verify_email(data.get('email'), data.get('code'), ip_address=client_ip())
    return _session_response(session)


@auth_bp.route('/login', methods=['POST'])
def login():
    data = _json_body()
    session = get_auth().authenticate_user(
        data.get('email'),
        data.get('password'),
        code=data.get('code'),
        ip_address=client_ip(),
    )
    return _session_response(session)


@auth_bp.route('/refresh', methods=['POST'])
def refresh():
    try:
        session = get_auth().refresh(_refresh_cookie(), ip_address=client_ip())
    except AuthError as e:
        resp = make_response(jsonify(e.to_dict()), e.status_code)
        return clear_refresh_cookie(resp)
    resp = make_response(jsonify({'accessToken': session.access_token}))
    return set_refresh_cookie(resp, session.refresh_token)


@auth_bp.route('/logout', methods=['POST'])
def logout():
    token = _refresh_cookie()
    try:
        get_auth().logout(token, ip_address=client_ip())
    except SQLAlchemyError:
        # Logout always succeeds for the client; the stored record expires on its own
        logger.exception("Failed to delete refresh token on logout")

    resp = make_response(jsonify({'message': 'Logged out'}))
    return clear_refresh_cookie(resp)


@auth_bp.route('/me', methods=['GET'])
def me():
    user = get_auth().current_user(_bearer_token())
    return jsonify({'user': user.to_public_dict()})


@auth_bp.route('/password', methods=['POST'])
def change_password():
    data = _json_body()
    session = get_auth().change_password(
        _bearer_token(),
        data.get('currentPassword'),
        data.get('newPassword'),
        ip_address=client_ip(),
    )
    return _session_response(session)


# --- SECOND FACTOR ROUTES ---

def second_factor_blueprint(name: str, url_prefix: str, kind: SecondFactorKind) -> Blueprint:
    """Setup/verify/disable endpoints for one second-factor slot."""
    bp = Blueprint(name, __name__, url_prefix=url_prefix)

    @bp.route('/setup', methods=['GET', 'POST'])
    def setup():
        email = request.args.get('email') or _json_body().get('email')
        return jsonify(get_auth().begin_second_factor(kind, email))

    @bp.route('/verify', methods=['POST'])
    def verify():
        data = _json_body()
        get_auth().confirm_second_factor(
            kind, data.get('email'), data.get('code'), data.get('secret'), ip_address=client_ip()
        )
        return jsonify({'message': f'{kind.label} enabled'})

    @bp.route('/disable', methods=['POST'])
    def disable():
        data = _json_body()
        get_auth().disable_second_factor(kind, data.get('email'), data.get('code'), ip_address=client_ip())
        return jsonify({'message': f'{kind.label} disabled'})

    return bp


two_factor_bp = second_factor_blueprint('two_factor', '/2fa', SecondFactorKind.TOTP)
security_key_bp = second_factor_blueprint('security_key', '/security-key', SecondFactorKind.SECURITY_KEY)
