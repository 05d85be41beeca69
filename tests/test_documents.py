from femisse import models
from femisse.documents import format_zip_code, is_valid_cpf, is_valid_phone, normalize_phone, normalize_zip_code
from femisse.dto import card_to_public, review_author
from femisse.masking import mask_card_number, mask_cpf, mask_email, mask_phone


class TestDocuments:
    """Validação de CPF, telefone e CEP."""

    def test_valid_cpf_with_and_without_punctuation(self):
        assert is_valid_cpf("529.982.247-25")
        assert is_valid_cpf("52998224725")

    def test_invalid_cpf(self):
        assert not is_valid_cpf("529.982.247-24")
        assert not is_valid_cpf("111.111.111-11")
        assert not is_valid_cpf("1234")
        assert not is_valid_cpf(None)

    def test_phone_strips_country_code(self):
        assert normalize_phone("+55 (11) 98765-4321") == "11987654321"
        assert is_valid_phone("(11) 3456-7890")
        assert not is_valid_phone("12345")

    def test_zip_code(self):
        assert normalize_zip_code("01310-100") == "01310100"
        assert format_zip_code("01310100") == "01310-100"
        assert format_zip_code("0131") == "0131"


class TestMasking:
    def test_email(self):
        assert mask_email("mariana@example.com") == "mar***@example.com"
        assert mask_email("invalido") is None

    def test_cpf_and_phone(self):
        assert mask_cpf("529.982.247-25") == "***.***.*25"
        assert mask_phone("11987654321") == "(11) *****-4321"
        assert mask_phone("123") is None

    def test_card_number(self):
        assert mask_card_number("4242") == "**** **** **** 4242"

    def test_card_dto_never_exposes_more_than_last_four(self):
        card = models.Card(
            id="c1",
            user_id="u1",
            holder_name="ANA SOUZA",
            last_four="4242",
            brand="visa",
            expiry_month=3,
            expiry_year=2031,
            is_default=True,
        )
        public = card_to_public(card)
        assert public.masked_number == "**** **** **** 4242"
        assert public.expiry == "03/31"

    def test_review_author_is_first_name(self):
        assert review_author("Ana Clara Souza") == "Ana"
        assert review_author("  ") == "Cliente Femisse"
        assert review_author(None) == "Cliente Femisse"
