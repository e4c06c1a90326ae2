"""
End-to-end tests for the practice API.

These tests go through real logins and bearer tokens instead of forced
authentication: a dietitian registers a patient, opens a portal account
for them, and the patient then reads their own record.  The tests use
Django REST Framework's APIClient within the APITestCase base class.

To run the tests:

```
pytest -q practice/tests/test_api.py
```
"""

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from ..models import Patient, PatientDietitian, Role, User
from ..services import rbac
from .conftest import PASSWORD


class NutriVaultAPITests(APITestCase):
    def setUp(self) -> None:
        """Seed the default roles and two dietitians sharing the practice."""
        roles = rbac.ensure_default_roles()
        self.dietitian = User.objects.create_user(
            username="diet1",
            password=PASSWORD,
            email="diet1@example.com",
            first_name="Jean",
            last_name="Martin",
            role=roles[Role.DIETITIAN],
        )
        self.colleague = User.objects.create_user(
            username="diet2",
            password=PASSWORD,
            email="diet2@example.com",
            role=roles[Role.DIETITIAN],
        )

    def authenticate(self, username: str, password: str = PASSWORD) -> APIClient:
        client = APIClient()
        res = client.post(reverse("login_view"), {"username": username, "password": password}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK, res.data)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {res.data['data']['access']}")
        return client

    def test_requests_without_credentials_are_rejected(self) -> None:
        res = self.client.get(reverse("patients_view"))
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(res.data["ok"])
        self.assertEqual(res.data["error"]["code"], "not_authenticated")

        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION="Bearer not-a-token")
        self.assertEqual(client.get(reverse("me_view")).status_code, status.HTTP_401_UNAUTHORIZED)

    def test_patient_is_scoped_to_its_dietitian(self) -> None:
        client = self.authenticate("diet1")
        res = client.post(
            reverse("patients_view"),
            {"firstName": "Marie", "lastName": "Dupont", "email": "marie@example.com"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        patient_id = res.data["data"]["id"]
        self.assertTrue(PatientDietitian.objects.filter(patient_id=patient_id, dietitian=self.dietitian).exists())

        listed = client.get(reverse("patients_view")).data
        self.assertEqual(listed["pagination"]["total"], 1)

        colleague = self.authenticate("diet2")
        self.assertEqual(colleague.get(reverse("patients_view")).data["pagination"]["total"], 0)
        res = colleague.get(reverse("patient_detail_view", args=[patient_id]))
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(res.data["error"]["code"], "permission_denied")

    def test_portal_account_reads_only_its_own_record(self) -> None:
        client = self.authenticate("diet1")
        patient = Patient.objects.create(first_name="Marie", last_name="Dupont", email="marie@example.com")
        PatientDietitian.objects.create(patient=patient, dietitian=self.dietitian)
        Patient.objects.create(first_name="Luc", last_name="Bernard", email="luc@example.com")

        res = client.post(reverse("patient_portal_account_view", args=[patient.pk]), {"password": PASSWORD},
                          format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["data"]["username"], "marie@example.com")

        portal = self.authenticate("marie@example.com")
        me = portal.get(reverse("portal_profile_view"))
        self.assertEqual(me.status_code, status.HTTP_200_OK)
        self.assertEqual(me.data["data"]["id"], patient.pk)
        self.assertTrue(me.data["data"]["hasPortalAccount"])
        self.assertEqual(portal.get(reverse("portal_visits_view")).data["pagination"]["total"], 0)

        # staff endpoints stay closed to the patient role
        self.assertEqual(portal.get(reverse("patients_view")).status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(portal.get(reverse("invoices_view")).status_code, status.HTTP_403_FORBIDDEN)

        again = client.post(reverse("patient_portal_account_view", args=[patient.pk]), {"password": PASSWORD},
                            format="json")
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
