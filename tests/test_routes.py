import pytest

from campusbites import socketio
from campusbites.models.models import Canteen, Order, Staff, Student
from campusbites.principal import issue_token


@pytest.fixture
def staff(make_staff, canteen):
    return make_staff(canteen)


def place_order(client, auth_headers, student, foods, **extra):
    body = {'items': [{'foodID': foods[0].id, 'quantity': 2}, {'foodID': foods[1].id, 'quantity': 1}]}
    body.update(extra)
    return client.post('/api/orders', json=body, headers=auth_headers('student', student))


def test_health(client):
    assert client.get('/health').get_json()['status'] == 'healthy'


def test_order_endpoints_require_token(client):
    response = client.post('/api/orders', json={})
    assert response.status_code == 401
    assert response.get_json()['success'] is False


def test_student_places_order(client, auth_headers, student, foods):
    response = place_order(client, auth_headers, student, foods)
    assert response.status_code == 201

    order = response.get_json()['order']
    assert order['total'] == 130
    assert order['status'] == 'Preparing'
    assert order['studentID'] == student.id
    assert order['items'][0] == {'foodID': foods[0].id, 'name': 'Masala Dosa', 'price': 50, 'quantity': 2}


def test_student_cannot_order_for_another_canteen(client, auth_headers, student, foods, make_canteen):
    response = place_order(client, auth_headers, student, foods, canID=make_canteen().can_id)
    assert response.status_code == 403
    assert Order.query.count() == 0


def test_validation_errors_map_to_status_codes(client, auth_headers, student, make_food, canteen):
    sold_out = make_food(canteen, 'Biryani', 120, in_stock=False)
    headers = auth_headers('student', student)

    response = client.post('/api/orders', json={'items': [{'foodID': sold_out.id, 'quantity': 1}]}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()['kind'] == 'out_of_stock'

    response = client.post('/api/orders', json={'items': [{'foodID': 999999, 'quantity': 1}]}, headers=headers)
    assert response.status_code == 404

    response = client.post('/api/orders', json={'items': []}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()['kind'] == 'invalid_input'


def test_banned_student_is_forbidden(client, auth_headers, make_student, canteen, foods):
    banned = make_student(canteen, banned=True)
    response = place_order(client, auth_headers, banned, foods)
    assert response.status_code == 403


def test_staff_lifecycle_over_http(client, auth_headers, student, staff, foods):
    order = place_order(client, auth_headers, student, foods).get_json()['order']
    headers = auth_headers('staff', staff)

    listed = client.get('/api/orders', headers=headers).get_json()['orders']
    assert [o['orderID'] for o in listed] == [order['orderID']]

    response = client.post(f"/api/orders/{order['orderID']}/ready", headers=headers)
    assert response.get_json()['order']['status'] == 'Ready'

    response = client.post('/api/orders/scan', json={'qr': order['qrToken']}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()['order']['status'] == 'Delivered'

    response = client.post('/api/orders/verify', headers=headers, json={
        'orderId': order['orderID'], 'token': order['dailyToken'], 'date': order['orderDate']
    })
    assert response.status_code == 409
    body = response.get_json()
    assert body['reason'] == 'already_delivered'
    assert body['order']['status'] == 'Delivered'


def test_orders_of_other_canteens_are_hidden(client, auth_headers, student, foods, make_canteen, make_staff):
    order = place_order(client, auth_headers, student, foods).get_json()['order']
    outsider = make_staff(make_canteen())

    response = client.post(f"/api/orders/{order['orderID']}/ready", headers=auth_headers('staff', outsider))
    assert response.status_code == 404
    assert Order.query.filter_by(order_id=order['orderID']).one().status == 'Preparing'


def test_pending_staff_cannot_act(client, auth_headers, make_staff, canteen):
    pending = make_staff(canteen, status='Pending')
    response = client.get('/api/orders', headers=auth_headers('staff', pending))
    assert response.status_code == 403


def test_student_cannot_mark_ready(client, auth_headers, student, foods):
    order = place_order(client, auth_headers, student, foods).get_json()['order']
    response = client.post(f"/api/orders/{order['orderID']}/ready", headers=auth_headers('student', student))
    assert response.status_code == 403


def test_status_override_rejects_unknown_status(client, auth_headers, student, canteen, foods):
    order = place_order(client, auth_headers, student, foods).get_json()['order']
    response = client.put(f"/api/orders/{order['orderID']}/status", json={'status': 'Lost'},
                          headers=auth_headers('admin', canteen))
    assert response.status_code == 400


def test_student_reissues_qr(client, auth_headers, student, foods):
    order = place_order(client, auth_headers, student, foods).get_json()['order']
    response = client.post(f"/api/orders/{order['orderID']}/qr", headers=auth_headers('student', student))
    assert response.status_code == 200
    assert response.get_json()['qrToken'] != order['qrToken']


def test_admin_signup_and_login(client):
    response = client.post('/api/auth/admin/signup', json={
        'collegeName': 'Govt Engineering College', 'email': ' Admin@GEC.edu ', 'password': 'supersecret'
    })
    assert response.status_code == 201
    can_id = response.get_json()['canID']
    assert can_id.startswith('CAN-')
    assert Canteen.query.filter_by(can_id=can_id).one().email == 'admin@gec.edu'

    duplicate = client.post('/api/auth/admin/signup', json={
        'collegeName': 'Another', 'email': 'admin@gec.edu', 'password': 'supersecret'
    })
    assert duplicate.status_code == 409

    login = client.post('/api/auth/admin/login', json={'email': 'ADMIN@gec.edu', 'password': 'supersecret'})
    assert login.status_code == 200
    assert login.get_json()['access_token']

    bad = client.post('/api/auth/admin/login', json={'email': 'admin@gec.edu', 'password': 'wrong-password'})
    assert bad.status_code == 401


def test_student_signup_normalizes_contact_details(client, canteen):
    response = client.post('/api/auth/student/signup', json={
        'canID': canteen.can_id, 'name': 'Asha', 'classSemester': 'ECE S2', 'mobile': '+91 98765 43210',
        'email': 'Asha@College.edu', 'admissionNumber': 'adm77', 'password': 'password1'
    })
    assert response.status_code == 201
    student = Student.query.filter_by(email='asha@college.edu').one()
    assert student.mobile == '9876543210'
    assert student.admission_number == 'ADM77'

    login = client.post('/api/auth/student/login', json={
        'loginWith': 'mobile', 'identifier': '9876543210', 'password': 'password1'
    })
    assert login.status_code == 200


def test_banned_student_cannot_log_in(client, canteen, make_student):
    banned = make_student(canteen, banned=True)
    response = client.post('/api/auth/student/login', json={'email': banned.email, 'password': 'student12345'})
    assert response.status_code == 403


def test_staff_signup_needs_approval(client, auth_headers, canteen):
    response = client.post('/api/auth/staff/signup', json={
        'name': 'Ravi', 'email': 'ravi@college.edu', 'password': 'password1', 'canteenId': canteen.can_id
    })
    assert response.status_code == 201
    staff_id = response.get_json()['staff']['_id']

    login = client.post('/api/auth/staff/login', json={'email': 'ravi@college.edu', 'password': 'password1'})
    assert login.status_code == 403

    approve = client.put(f"/api/admin/staff/{staff_id}/status", json={'status': 'Approved'},
                         headers=auth_headers('admin', canteen))
    assert approve.status_code == 200
    assert Staff.query.get(staff_id).is_approved

    login = client.post('/api/auth/staff/login', json={'email': 'ravi@college.edu', 'password': 'password1'})
    assert login.status_code == 200


def test_admin_toggles_student_ban(client, auth_headers, canteen, student):
    headers = auth_headers('admin', canteen)
    response = client.patch(f"/api/admin/students/{student.id}/ban", headers=headers)
    assert response.get_json()['student']['banned'] is True
    assert response.get_json()['student']['bannedAt']

    response = client.patch(f"/api/admin/students/{student.id}/ban", headers=headers)
    assert response.get_json()['student']['banned'] is False
    assert response.get_json()['student']['bannedAt'] is None


def test_admin_deletes_student_without_orders(client, auth_headers, canteen, make_student, make_canteen):
    headers = auth_headers('admin', canteen)
    newcomer = make_student(canteen)
    newcomer_id = newcomer.id

    response = client.delete(f"/api/admin/students/{newcomer_id}", headers=headers)
    assert response.status_code == 200
    assert Student.query.filter_by(id=newcomer_id).first() is None

    outsider = make_student(make_canteen())
    response = client.delete(f"/api/admin/students/{outsider.id}", headers=headers)
    assert response.status_code == 404
    assert Student.query.filter_by(id=outsider.id).first() is not None


def test_admin_cannot_delete_student_with_orders(client, auth_headers, canteen, student, foods):
    place_order(client, auth_headers, student, foods)

    response = client.delete(f"/api/admin/students/{student.id}", headers=auth_headers('admin', canteen))
    assert response.status_code == 409
    assert response.get_json()['reason'] == 'has_orders'
    assert Student.query.filter_by(id=student.id).first() is not None
    assert Order.query.count() == 1


def test_menu_is_scoped_to_canteen(client, auth_headers, canteen, student, foods, make_canteen, make_food):
    make_food(make_canteen(), 'Elsewhere Vada', 20)
    names = [food['name'] for food in client.get('/api/foods', headers=auth_headers('student', student))
             .get_json()['foods']]
    assert names == ['Filter Coffee', 'Masala Dosa']

    created = client.post('/api/foods', json={'name': 'Tea', 'price': '12', 'category': 'drinks'},
                          headers=auth_headers('admin', canteen))
    assert created.status_code == 201
    assert created.get_json()['food']['category'] == 'drink'


def test_payment_checkout_over_http(app, client, auth_headers, student, foods, monkeypatch):
    class Gateway:
        key_id = 'rzp_test_key'
        key_secret = 'rzp_test_secret'

        def create_order(self, amount, currency, receipt, notes=None):
            return {'id': 'order_http', 'amount': amount, 'currency': currency}

    monkeypatch.setattr(app.payment_service, 'gateway_factory', lambda canteen: Gateway())
    response = client.post('/api/payments/razorpay/order',
                           json={'items': [{'foodID': foods[1].id, 'quantity': 3}]},
                           headers=auth_headers('student', student))
    assert response.status_code == 201
    assert response.get_json()['amount'] == 9000
    assert response.get_json()['razorpayOrderId'] == 'order_http'


def test_staff_socket_receives_new_orders(app, client, auth_headers, canteen, student, staff, foods):
    token = issue_token('staff', staff.id, canteen.can_id)
    socket_client = socketio.test_client(app, auth={'token': token})
    assert socket_client.is_connected()

    order = place_order(client, auth_headers, student, foods).get_json()['order']
    received = socket_client.get_received()
    assert [event['name'] for event in received] == ['newOrder']
    assert received[0]['args'][0]['order']['orderID'] == order['orderID']
    socket_client.disconnect()


def test_socket_rejects_students_and_missing_tokens(app, student):
    assert not socketio.test_client(app).is_connected()
    student_token = issue_token('student', student.id, student.can_id)
    assert not socketio.test_client(app, auth={'token': student_token}).is_connected()
