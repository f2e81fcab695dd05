import logging
from decimal import Decimal, InvalidOperation
from functools import wraps

from flask import (Blueprint, current_app, flash, g, redirect, render_template,
                   request, session, url_for)
from werkzeug.exceptions import RequestEntityTooLarge

from .api import ApiClient
from .dispatch import ViewScope
from .errors import ApiError, AuthenticationError
from .models import Cart, Role
from .session import SessionContext

logger = logging.getLogger(__name__)

bp = Blueprint('store', __name__)


def get_session():
    if 'store_session' not in g:
        # the real session object, not the proxy: worker threads read it too
        g.store_session = SessionContext(session._get_current_object())
    return g.store_session


def get_api():
    if 'api' not in g:
        g.api = ApiClient(
            current_app.config['API_BASE_URL'],
            get_session(),
            http=current_app.extensions['storefront.http'],
            timeout=current_app.config['API_TIMEOUT'],
        )
    return g.api


def view_scope():
    return ViewScope()


@bp.app_context_processor
def inject_session():
    return {'current_session': get_session()}


def login_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        if not get_session().is_authenticated:
            flash('Please login first.', 'warning')
            return redirect(url_for('store.login'))
        return f(*args, **kwargs)
    return wrapped


def admin_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        store = get_session()
        if not store.is_authenticated:
            flash('Please login first.', 'warning')
            return redirect(url_for('store.login'))
        if not store.is_admin:
            return redirect(url_for('store.dashboard'))
        return f(*args, **kwargs)
    return wrapped


def _fail(error, action):
    logger.info('%s failed: %s', action, error)
    flash(str(error), 'danger')


def _admin_revoked(error):
    # the server no longer accepts this session as admin
    store = get_session()
    store.set(store.token, store.username, Role.USER)
    logger.info('admin access revoked for %s: %s', store.username, error)
    flash('Admin access is no longer available.', 'warning')
    return redirect(url_for('store.dashboard'))


def _item_form():
    """Read and check the item form; returns (fields, error message)."""
    title = request.form.get('title', '').strip()
    description = request.form.get('description', '').strip()
    price_raw = request.form.get('price', '').strip()
    if not title:
        return None, 'Title required.'
    try:
        price = Decimal(price_raw)
        if price < 0:
            raise ValueError()
    except (ValueError, InvalidOperation):
        return None, 'Invalid price. Must be a positive number.'
    return {
        'title': title,
        'description': description,
        'price': price,
        'imageUrl': request.form.get('image_url', '').strip() or None,
    }, None


def _upload_if_present(api, fields):
    image = request.files.get('image')
    if image and image.filename:
        fields['imageUrl'] = api.upload_image(image.stream, image.filename, image.mimetype)
    return fields


@bp.app_errorhandler(RequestEntityTooLarge)
def too_large(e):
    flash('Image file too large. Maximum size is 5MB.', 'danger')
    return redirect(request.referrer or url_for('store.add_item'))


@bp.route('/')
def index():
    if get_session().is_authenticated:
        return redirect(url_for('store.dashboard'))
    return redirect(url_for('store.login'))


@bp.route('/register', methods=['GET', 'POST'])
def register():
    if request.method == 'POST':
        fields = {k: request.form.get(k, '').strip() for k in ('firstname', 'lastname', 'email')}
        fields['password'] = request.form.get('password', '')
        if not all(fields.values()):
            flash('All fields are required.', 'danger')
            return render_template('register.html', form=fields), 400
        try:
            get_api().register(fields)
        except ApiError as e:
            _fail(e, 'register')
            return render_template('register.html', form=fields), 400
        flash('Registered. Please login.', 'success')
        return redirect(url_for('store.login'))
    return render_template('register.html', form={})


@bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        email = request.form.get('email', '').strip().lower()
        password = request.form.get('password', '')
        try:
            get_api().login({'email': email, 'password': password})
        except ApiError as e:
            _fail(e, 'login')
            return render_template('login.html', email=email), 401
        flash('Logged in successfully.', 'success')
        return redirect(url_for('store.dashboard'))
    return render_template('login.html', email='')


@bp.route('/logout')
def logout():
    get_api().logout()
    flash('Logged out.', 'info')
    return redirect(url_for('store.login'))


@bp.route('/dashboard')
@login_required
def dashboard():
    search = request.args.get('search', '').strip()
    api = get_api()
    items, cart_count = [], None
    with view_scope() as scope:
        items_call = scope.fetch('list_items', api.list_items)
        cart_call = scope.fetch('get_cart', api.get_cart)
        try:
            items = items_call.result()
        except ApiError as e:
            _fail(e, 'list items')
        try:
            cart = cart_call.result()
        except ApiError as e:
            # badge stays hidden
            logger.info('cart count unavailable: %s', e)
        if cart_call.confirmed:
            cart_count = len(cart)
    if search:
        items = [i for i in items if search.lower() in i.title.lower()]
    return render_template('dashboard.html', items=items, search=search, cart_count=cart_count)


@bp.route('/items/<int:item_id>')
@login_required
def item_detail(item_id):
    with view_scope() as scope:
        call = scope.fetch('get_item', get_api().get_item, item_id)
        try:
            item = call.result()
        except ApiError as e:
            _fail(e, 'load item')
            return render_template('item_detail.html', item=None), e.status_code or 502
    return render_template('item_detail.html', item=item)


@bp.route('/items/new', methods=['GET', 'POST'])
@login_required
def add_item():
    if request.method == 'POST':
        fields, error = _item_form()
        if error:
            flash(error, 'danger')
            return redirect(url_for('store.add_item'))
        api = get_api()
        try:
            api.create_item(_upload_if_present(api, fields))
        except ApiError as e:
            _fail(e, 'post item')
            return redirect(url_for('store.add_item'))
        flash('Item listed.', 'success')
        return redirect(url_for('store.dashboard'))
    return render_template('add_item.html', item=None)


@bp.route('/my-listings')
@login_required
def my_listings():
    items = []
    with view_scope() as scope:
        call = scope.fetch('my_items', get_api().my_items)
        try:
            items = call.result()
        except ApiError as e:
            _fail(e, 'load listings')
    return render_template('my_listings.html', items=items)


@bp.route('/items/<int:item_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_item(item_id):
    api = get_api()
    if request.method == 'POST':
        fields, error = _item_form()
        if error:
            flash(error, 'danger')
            return redirect(url_for('store.edit_item', item_id=item_id))
        try:
            api.update_item(item_id, _upload_if_present(api, fields))
        except ApiError as e:
            _fail(e, 'update item')
            return redirect(url_for('store.edit_item', item_id=item_id))
        flash('Listing updated.', 'success')
        return redirect(url_for('store.my_listings'))
    with view_scope() as scope:
        call = scope.fetch('get_item', api.get_item, item_id)
        try:
            item = call.result()
        except ApiError as e:
            _fail(e, 'load item')
            return redirect(url_for('store.my_listings'))
    return render_template('add_item.html', item=item)


@bp.route('/items/<int:item_id>/delete', methods=['POST'])
@login_required
def delete_item(item_id):
    try:
        get_api().delete_item(item_id)
    except ApiError as e:
        _fail(e, 'delete item')
    else:
        flash('Item deleted.', 'info')
    return redirect(url_for('store.my_listings'))


@bp.route('/cart')
@login_required
def view_cart():
    cart = Cart()
    with view_scope() as scope:
        call = scope.fetch('get_cart', get_api().get_cart)
        try:
            cart = call.result()
        except ApiError as e:
            _fail(e, 'load cart')
    return render_template('cart.html', cart=cart)


@bp.route('/cart/add/<int:item_id>', methods=['POST'])
@login_required
def add_to_cart(item_id):
    try:
        get_api().add_to_cart(item_id)
    except ApiError as e:
        _fail(e, 'add to cart')
    else:
        flash('Added to cart.', 'success')
    return redirect(request.referrer or url_for('store.dashboard'))


@bp.route('/cart/remove/<int:cart_item_id>', methods=['POST'])
@login_required
def remove_from_cart(cart_item_id):
    try:
        get_api().remove_from_cart(cart_item_id)
    except ApiError as e:
        _fail(e, 'remove from cart')
    else:
        flash('Removed from cart.', 'info')
    return redirect(url_for('store.view_cart'))


@bp.route('/cart/checkout', methods=['POST'])
@login_required
def checkout():
    try:
        get_api().checkout()
    except ApiError as e:
        _fail(e, 'checkout')
        return redirect(url_for('store.view_cart'))
    flash('Checkout successful! Your order has been placed.', 'success')
    return redirect(url_for('store.dashboard'))


@bp.route('/admin')
@admin_required
def admin():
    view = 'users' if request.args.get('view') == 'users' else 'items'
    api = get_api()
    rows = []
    with view_scope() as scope:
        call = scope.fetch(view, api.admin_list_users if view == 'users' else api.admin_list_items)
        try:
            rows = call.result()
        except AuthenticationError as e:
            return _admin_revoked(e)
        except ApiError as e:
            _fail(e, 'admin ' + view)
    return render_template('admin.html', view=view, rows=rows)


@bp.route('/admin/items/<int:item_id>/delete', methods=['POST'])
@admin_required
def admin_delete_item(item_id):
    try:
        get_api().admin_delete_item(item_id)
    except AuthenticationError as e:
        return _admin_revoked(e)
    except ApiError as e:
        _fail(e, 'admin delete item')
    else:
        flash('Item deleted.', 'info')
    return redirect(url_for('store.admin', view='items'))


@bp.route('/admin/users/<int:user_id>/toggle-admin', methods=['POST'])
@admin_required
def admin_toggle_role(user_id):
    try:
        role = get_api().admin_toggle_role(user_id)
    except AuthenticationError as e:
        return _admin_revoked(e)
    except ApiError as e:
        _fail(e, 'toggle admin')
    else:
        flash(f'User role is now {role.value}.', 'success')
    return redirect(url_for('store.admin', view='users'))
