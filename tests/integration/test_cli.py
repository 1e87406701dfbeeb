from farmstore.models import Profile


def test_init_db(app):
    result = app.test_cli_runner().invoke(args=['init-db'])
    assert result.exit_code == 0
    assert 'Database tables created.' in result.output


def test_create_profile_then_promote(app, session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['create-profile', '--external-id', 'idp-123', '--name', 'Till One'])
    assert result.exit_code == 0
    profile = session.query(Profile).filter_by(external_id='idp-123').one()
    assert (profile.role, profile.full_name) == ('worker', 'Till One')

    result = runner.invoke(args=['create-profile', '--external-id', 'idp-123', '--role', 'admin'])
    assert result.exit_code == 0
    session.expire_all()
    assert session.query(Profile).filter_by(external_id='idp-123').one().role == 'admin'
