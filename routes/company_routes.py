import json
import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from extensions import db
from errors import ForbiddenError, NotFoundError, ValidationError, form_error_message
from models.models import Company, Service, MODERATOR_ROLES
from routes.forms import CompanyForm, CompanyUpdateForm
from routes.upload_routes import save_image, delete_image, LOGO_MAX_BYTES
from security import roles_required, escape_like
from utils import paginate, request_data, company_to_dict, service_to_dict

logger = logging.getLogger(__name__)

company_bp = Blueprint('companies', __name__, url_prefix='/api/companies')

SOCIAL_NETWORKS = ('facebook', 'twitter', 'instagram', 'linkedin')


def _nested(data, key):
    """Read a nested object that may arrive as a dict (JSON) or a JSON string (multipart)."""
    value = data.get(key)
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValidationError(f"Invalid {key} format")
    return value if isinstance(value, dict) else None


def _get_company(company_id):
    return db.get_or_404(Company, company_id, description='Company not found')


def _check_manager(company):
    if company.owner_id != current_user.id and current_user.role not in MODERATOR_ROLES:
        raise ForbiddenError('Not authorized')


def _replace_logo(company, file):
    stored = save_image(file, 'logos', LOGO_MAX_BYTES)
    if company.logo_public_id:
        delete_image(company.logo_public_id)
    company.logo = stored['url']
    company.logo_public_id = stored['public_id']


def _company_detail(company, services):
    data = company_to_dict(company)
    data['services'] = [service_to_dict(s) for s in services]
    data['stats'] = company.stats(services)
    return data


@company_bp.route('', methods=['POST'])
@roles_required('provider', 'admin', 'superuser')
def create_company():
    if Company.query.filter_by(owner_id=current_user.id).first():
        raise ValidationError('You already have a company registered')

    form = CompanyForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    data = request_data()
    company = Company(
        name=form.name.data,
        description=form.description.data,
        email=form.email.data,
        phone=form.phone.data,
        website=form.website.data,
        service_type=form.service_type.data,
        owner_id=current_user.id,
    )
    company.address = _nested(data, 'address')
    social = _nested(data, 'social_links') or {}
    company.social_links = {k: v for k, v in social.items() if k in SOCIAL_NETWORKS}
    db.session.add(company)
    db.session.commit()

    logger.info(f"Company {company.id} created by user {current_user.id}")
    return jsonify(company_to_dict(company)), 201


@company_bp.route('', methods=['GET'])
def list_companies():
    query = Company.query.filter(Company.is_active.is_(True))
    search = request.args.get('search', '').strip()
    if search:
        pattern = f"%{escape_like(search)}%"
        query = query.filter(
            Company.name.ilike(pattern, escape='\\') | Company.description.ilike(pattern, escape='\\')
        )
    companies, meta = paginate(query.order_by(Company.created_at.desc()), 10)

    items = []
    for company in companies:
        data = company_to_dict(company)
        data['service_count'] = company.service_count
        items.append(data)
    return jsonify({'companies': items, **meta})


@company_bp.route('/<int:company_id>', methods=['GET'])
def get_company(company_id):
    company = db.session.get(Company, company_id)
    if company is None or not company.is_active:
        raise NotFoundError('Company not found')
    services = [s for s in company.services if s.is_active]
    return jsonify(_company_detail(company, services))


@company_bp.route('/user/me', methods=['GET'])
@login_required
def my_company():
    company = Company.query.filter_by(owner_id=current_user.id).first()
    if company is None:
        raise NotFoundError('You have not registered a company yet')
    return jsonify(_company_detail(company, company.services))


@company_bp.route('/<int:company_id>', methods=['PUT'])
@login_required
def update_company(company_id):
    company = _get_company(company_id)
    _check_manager(company)

    form = CompanyUpdateForm()
    if not form.validate():
        raise ValidationError(form_error_message(form))

    data = request_data()
    for field in ('name', 'description', 'email', 'phone', 'website', 'service_type'):
        if data.get(field):
            setattr(company, field, getattr(form, field).data)

    address = _nested(data, 'address')
    if address:
        merged = company.address
        merged.update(address)
        company.address = merged

    social = _nested(data, 'social_links')
    if social:
        links = dict(company.social_links or {})
        links.update({k: v for k, v in social.items() if k in SOCIAL_NETWORKS})
        company.social_links = links

    logo = request.files.get('logo')
    if logo and logo.filename:
        _replace_logo(company, logo)

    db.session.commit()
    return jsonify(company_to_dict(company))


@company_bp.route('/<int:company_id>/logo', methods=['POST'])
@login_required
def upload_company_logo(company_id):
    company = _get_company(company_id)
    _check_manager(company)

    logo = request.files.get('logo')
    if logo is None:
        raise ValidationError('Please upload an image')
    _replace_logo(company, logo)
    db.session.commit()
    return jsonify({'logo': company.logo, 'message': 'Logo uploaded successfully'})


@company_bp.route('/<int:company_id>', methods=['DELETE'])
@login_required
def delete_company(company_id):
    company = _get_company(company_id)
    _check_manager(company)

    logo_public_id = company.logo_public_id
    deactivated = Service.query.filter_by(company_id=company.id).count()
    company.remove()
    db.session.commit()
    delete_image(logo_public_id)

    logger.info(f"Company {company_id} removed by user {current_user.id}; {deactivated} service(s) deactivated")
    return jsonify({'message': 'Company removed and its services deactivated', 'deactivated_services': deactivated})


@company_bp.route('/<int:company_id>/verify', methods=['PUT'])
@roles_required('admin', 'superuser')
def verify_company(company_id):
    company = _get_company(company_id)
    company.is_verified = True
    db.session.commit()
    logger.info(f"Company {company.id} verified by {current_user.id}")
    return jsonify({'message': 'Company verified', 'company': company_to_dict(company)})
